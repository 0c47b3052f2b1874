"""
pgbox command workflows.

This module sequences catalog lookup, aggregation, rendering and the Docker
calls behind each CLI command, separated from argument parsing.
"""

import shutil
import sys
import tempfile
from argparse import Namespace
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.table import Table

from .aggregator import AggregationResult, aggregate, resolve_base_image
from .catalog import Catalog, get_deb_arch, load_catalog
from .config import (
    CONTAINER_PORT,
    DEFAULT_VERSION,
    PostgresConfig,
    parse_extension_list,
    validate_postgres_version,
)
from .docker import PGBOX_PREFIX, ContainerOptions, DockerManager
from .models import ComposeModel, DockerfileModel, InitModel, PGConfModel
from .naming import container_name, image_name, volume_name
from .prompt import prompt_confirm, prompt_user_choice
from .render import (
    COMPOSE_FILE_NAME,
    DOCKERFILE_NAME,
    INIT_SQL_NAME,
    PG_CONF_NAME,
    postgres_command,
    render_compose,
    render_dockerfile,
    render_init_sql,
    render_postgresql_conf,
)

DATA_DIR = "/var/lib/postgresql/data"
INIT_SQL_MOUNT = "/docker-entrypoint-initdb.d/init.sql"
NON_INTERACTIVE_PSQL_FLAGS = {
    "-c",
    "--command",
    "-f",
    "--file",
    "-l",
    "--list",
    "--help",
    "--version",
}
SEPARATOR = "-" * 40


@dataclass
class ArtifactModels:
    """Models for one request, handed to the renderers."""

    dockerfile: DockerfileModel
    pg_conf: PGConfModel
    init: InitModel


def build_models(
    result: AggregationResult | None, version: str, base_image: str
) -> ArtifactModels:
    """
    Populate fresh artifact models from an aggregation result.

    Args:
        result: Aggregated extension requirements, None when no extensions
        version: PostgreSQL major version
        base_image: Image for the Dockerfile FROM line

    Returns:
        ArtifactModels ready for rendering
    """
    models = ArtifactModels(
        dockerfile=DockerfileModel(base_image=base_image, pg_major=version),
        pg_conf=PGConfModel(),
        init=InitModel(),
    )
    if result is None:
        return models

    models.dockerfile.add_packages(result.packages)
    models.dockerfile.add_deb_urls(result.deb_urls)
    models.dockerfile.add_zip_urls(result.zip_urls)
    if result.preload:
        models.pg_conf.add_shared_preload(*result.preload)
    for key, value in result.gucs.items():
        models.pg_conf.set_guc(key, value)
    for name, sql in result.sql_fragments:
        models.init.add_fragment(name, sql)
    return models


class Orchestrator:
    """
    Runs pgbox commands.

    Args:
        console: Rich Console instance for formatted output
        catalog: Extension catalog, built with load_catalog() when omitted
        docker_factory: Callable returning a DockerManager context manager
        stdin_is_terminal: Callable reporting whether stdin is a TTY
        env_file: .env file consulted for default settings
    """

    def __init__(
        self,
        console: Console,
        catalog: Catalog | None = None,
        docker_factory: Callable[[], DockerManager] = DockerManager,
        stdin_is_terminal: Callable[[], bool] | None = None,
        env_file: str = ".env",
    ) -> None:
        self.console = console
        self.catalog = catalog if catalog is not None else load_catalog()
        self.docker_factory = docker_factory
        self.stdin_is_terminal = stdin_is_terminal or sys.stdin.isatty
        self.env_file = env_file

    def _resolve_config(self, args: Namespace) -> PostgresConfig:
        return PostgresConfig.resolve(
            version=getattr(args, "version", None),
            port=getattr(args, "port", None),
            database=getattr(args, "database", None),
            user=getattr(args, "user", None),
            password=getattr(args, "password", None),
            env_file=self.env_file,
        )

    def _aggregate(self, extensions: list[str], version: str) -> AggregationResult | None:
        if not extensions:
            return None
        return aggregate(self.catalog, extensions, version, get_deb_arch())

    # up

    def handle_up_command(self, args: Namespace) -> None:
        """
        Start a PostgreSQL container, building a custom image if extensions need one.

        An existing container with the derived name is started again instead
        of being recreated.

        Raises:
            UnknownExtensionsError: If a requested extension is not in the catalog
            ExtensionConflictError: If requested extensions disagree on a GUC
            DockerCommandError: If a Docker operation fails
        """
        pg_config = self._resolve_config(args)
        extensions = parse_extension_list(getattr(args, "ext", None))
        self.catalog.validate(extensions)
        detach = getattr(args, "detach", True)

        name = getattr(args, "name", None) or container_name(
            self.catalog, pg_config.version, extensions
        )

        with self.docker_factory() as docker_mgr:
            if self._try_start_existing(docker_mgr, name):
                return

            result = self._aggregate(extensions, pg_config.version)
            base_image = resolve_base_image(self.catalog, extensions, pg_config.version)
            models = build_models(result, pg_config.version, base_image)

            if result is not None and result.needs_custom_image:
                pg_config.custom_image = self._build_custom_image(
                    docker_mgr, pg_config.version, extensions, models.dockerfile
                )

            self._print_up_status(pg_config, name, extensions, detach)
            opts = self._container_options(name, detach, models)
            output = docker_mgr.run_postgres(pg_config, opts)
            if detach:
                self.console.print(
                    f"Container {name} started ({output.strip()[:12]})", style="green"
                )

    def _try_start_existing(self, docker_mgr: DockerManager, name: str) -> bool:
        if not docker_mgr.container_exists(name):
            return False
        if docker_mgr.is_container_running(name):
            self.console.print(f"Container {name} is already running")
            return True
        self.console.print(f"Restarting existing container: {name}")
        docker_mgr.start_container(name)
        self.console.print(f"Container {name} restarted successfully", style="green")
        return True

    def _build_custom_image(
        self,
        docker_mgr: DockerManager,
        version: str,
        extensions: list[str],
        dockerfile: DockerfileModel,
    ) -> str:
        """
        Build the image for a set of extensions unless it already exists.

        The Dockerfile is rendered into a temporary build directory that is
        removed afterwards, whether or not the build succeeds.

        Returns:
            Name of the custom image
        """
        tag = image_name(self.catalog, version, extensions)
        if docker_mgr.image_exists(tag):
            self.console.print(f"Using existing custom image: {tag}")
            return tag

        build_dir = tempfile.mkdtemp(prefix="pgbox-build-")
        try:
            try:
                render_dockerfile(dockerfile, build_dir)
            except OSError as e:
                raise RuntimeError(f"Failed to render {DOCKERFILE_NAME}: {e}") from e
            self.console.print("Building custom PostgreSQL image with extensions...")
            docker_mgr.build_image(tag, build_dir, {"PG_MAJOR": version})
        finally:
            try:
                shutil.rmtree(build_dir)
            except OSError as e:
                self.console.print(
                    f"Warning: failed to remove build directory {build_dir}: {e}",
                    style="yellow",
                )
        return tag

    def _container_options(
        self, name: str, detach: bool, models: ArtifactModels
    ) -> ContainerOptions:
        opts = ContainerOptions(name=name)
        if detach:
            opts.extra_args.append("-d")
        opts.extra_args.extend(["-v", f"{volume_name(name)}:{DATA_DIR}"])

        if models.init.fragments:
            init_dir = Path(tempfile.gettempdir()) / f"pgbox-{name}"
            try:
                init_dir.mkdir(parents=True, exist_ok=True)
                init_path = render_init_sql(models.init, init_dir)
            except OSError as e:
                raise RuntimeError(f"Failed to render {INIT_SQL_NAME}: {e}") from e
            opts.extra_args.extend(["-v", f"{init_path}:{INIT_SQL_MOUNT}:ro"])

        # drop the leading "postgres" so the image entrypoint receives only flags
        opts.command.extend(postgres_command(models.pg_conf)[1:])
        return opts

    def _print_up_status(
        self,
        pg_config: PostgresConfig,
        name: str,
        extensions: list[str],
        detach: bool,
    ) -> None:
        self.console.print(f"Starting PostgreSQL {pg_config.version}...")
        self.console.print(f"Container: {name}")
        self.console.print(f"Port: {pg_config.port}")
        self.console.print(f"User: {pg_config.user}")
        self.console.print(f"Database: {pg_config.database}")
        if extensions:
            self.console.print(f"Extensions: {', '.join(extensions)}")
        if detach:
            self.console.print(
                f"\nRunning in background. Use 'pgbox down -n {name}' to stop."
            )
        else:
            self.console.print("\nPress Ctrl+C to stop the container")
        self.console.print(SEPARATOR)

    # export

    def handle_export_command(self, args: Namespace) -> None:
        """
        Write a standalone Docker Compose project to a directory.

        Generates Dockerfile, docker-compose.yml, init.sql and, when the
        extensions need server settings, postgresql.conf.pgbox. Existing files
        keep everything outside their pgbox block.

        Raises:
            UnknownExtensionsError: If a requested extension is not in the catalog
            ExtensionConflictError: If requested extensions disagree on a GUC
            RuntimeError: If a file cannot be written
        """
        pg_config = self._resolve_config(args)
        extensions = parse_extension_list(getattr(args, "ext", None))
        target_dir = Path(args.directory)

        result = self._aggregate(extensions, pg_config.version)
        base_image = getattr(args, "base_image", None) or resolve_base_image(
            self.catalog, extensions, pg_config.version
        )
        models = build_models(result, pg_config.version, base_image)

        compose = ComposeModel(
            service_name="db",
            image=base_image,
            build_path=".",
            pg_major=pg_config.version,
        )
        compose.add_port(f"{pg_config.port}:{CONTAINER_PORT}")
        compose.add_volume(f"postgres_data:{DATA_DIR}")
        compose.add_volume(f"./{INIT_SQL_NAME}:{INIT_SQL_MOUNT}:ro")
        compose.set_env("POSTGRES_USER", pg_config.user)
        if pg_config.password:
            compose.set_env("POSTGRES_PASSWORD", pg_config.password)
        else:
            # the official image refuses to initialize with an empty password
            compose.set_env("POSTGRES_HOST_AUTH_METHOD", "trust")
        compose.set_env("POSTGRES_DB", pg_config.database)

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(f"Failed to create directory {target_dir}: {e}") from e

        renders = [
            (DOCKERFILE_NAME, lambda: render_dockerfile(models.dockerfile, target_dir)),
            (
                COMPOSE_FILE_NAME,
                lambda: render_compose(compose, models.pg_conf, target_dir),
            ),
            (INIT_SQL_NAME, lambda: render_init_sql(models.init, target_dir)),
            (PG_CONF_NAME, lambda: render_postgresql_conf(models.pg_conf, target_dir)),
        ]
        for file_name, render in renders:
            try:
                render()
            except OSError as e:
                raise RuntimeError(f"Failed to render {file_name}: {e}") from e

        self._print_export_success(target_dir, extensions, models.pg_conf)

    def _print_export_success(
        self, target_dir: Path, extensions: list[str], pg_conf: PGConfModel
    ) -> None:
        self.console.print(f"Exported Docker configuration to {target_dir}", style="green")
        if extensions:
            self.console.print(f"With extensions: {', '.join(extensions)}")
        self.console.print("\nTo start PostgreSQL:")
        self.console.print(f"  cd {target_dir}")
        self.console.print("  docker compose up -d")
        if pg_conf.require_restart:
            self.console.print(
                "\nNote: Some extensions require server configuration changes."
            )
            self.console.print("The container will start with the required settings.")

    # container lifecycle

    def _resolve_container(
        self, docker_mgr: DockerManager, name: str | None, require_running: bool = False
    ) -> str:
        """
        Container to act on: the given name, or a detected pgbox container.

        With several running pgbox containers and a terminal attached, the user
        picks one.

        Raises:
            Exception: If no container is given or found, or the given one is
                not running when require_running is set
        """
        if name:
            if require_running and not docker_mgr.is_container_running(name):
                raise Exception(f"container {name} is not running. Start it with: pgbox up")
            return name

        running = [c.name for c in docker_mgr.list_containers(PGBOX_PREFIX)]
        if len(running) > 1 and self.stdin_is_terminal():
            choice = prompt_user_choice(running, "Select a pgbox container:")
            if not choice:
                raise Exception("Container selection cancelled")
            return choice

        found = docker_mgr.find_pgbox_container()
        if not found:
            raise Exception(
                "no running pgbox container found. Specify container name with -n flag"
            )
        self.console.print(f"Found running container: {found}")
        return found

    def handle_down_command(self, args: Namespace) -> None:
        """Stop a pgbox container, keeping it and its data volume."""
        with self.docker_factory() as docker_mgr:
            name = self._resolve_container(docker_mgr, getattr(args, "name", None))
            self.console.print(f"Stopping container {name}...")
            docker_mgr.stop_container(name)
            self.console.print(f"Container {name} stopped successfully", style="green")

    def handle_restart_command(self, args: Namespace) -> None:
        with self.docker_factory() as docker_mgr:
            name = self._resolve_container(docker_mgr, getattr(args, "name", None))
            self.console.print(f"Restarting container {name}...")
            docker_mgr.restart_container(name)
            self.console.print(f"Container {name} restarted successfully", style="green")

    def handle_logs_command(self, args: Namespace) -> None:
        with self.docker_factory() as docker_mgr:
            name = self._resolve_container(docker_mgr, getattr(args, "name", None))
            docker_mgr.stream_logs(name, follow=getattr(args, "follow", False))

    def handle_status_command(self, args: Namespace) -> None:
        """Show running pgbox containers, or details of one container."""
        name = getattr(args, "name", None)
        with self.docker_factory() as docker_mgr:
            if not name:
                containers = docker_mgr.list_containers(PGBOX_PREFIX)
                if not containers:
                    self.console.print("No pgbox containers are running.")
                    self.console.print("\nStart a container with: pgbox up")
                    return
                self.console.print("PostgreSQL containers:")
                self._print_container_table(docker_mgr.describe_containers(containers))
                return

            if not docker_mgr.is_container_running(name):
                self.console.print(f"Container '{name}' is not running.")
                return

            self.console.print("Container status:")
            container = docker_mgr.get_container(name)
            self._print_container_table(docker_mgr.describe_containers([container]))

            database = docker_mgr.get_container_env(name, "POSTGRES_DB")
            user = docker_mgr.get_container_env(name, "POSTGRES_USER")
            if not database and not user:
                return
            self.console.print("\nDatabase configuration:")
            if database:
                self.console.print(f"  Database: {database}")
            if user:
                self.console.print(f"  User: {user}")
            port = docker_mgr.get_host_port(name)
            if port:
                self.console.print("\nConnection string:")
                self.console.print(f"  postgres://{user}@localhost:{port}/{database}")

    def _print_container_table(self, rows: list[dict[str, str]]) -> None:
        table = Table("Name", "Image", "Status", "Ports")
        for row in rows:
            table.add_row(row["name"], row["image"], row["status"], row["ports"])
        self.console.print(table)

    def handle_psql_command(self, args: Namespace) -> None:
        """
        Open psql inside a running container.

        User and database default to the container's POSTGRES_USER and
        POSTGRES_DB. A TTY is requested only for interactive sessions: stdin is
        a terminal and no one-shot flag such as -c or -f is given.
        """
        extra_args = list(getattr(args, "psql_args", None) or [])
        if extra_args and extra_args[0] == "--":
            extra_args = extra_args[1:]

        with self.docker_factory() as docker_mgr:
            name = self._resolve_container(
                docker_mgr, getattr(args, "name", None), require_running=True
            )
            user = (
                getattr(args, "user", None)
                or docker_mgr.get_container_env(name, "POSTGRES_USER")
                or "postgres"
            )
            database = (
                getattr(args, "database", None)
                or docker_mgr.get_container_env(name, "POSTGRES_DB")
                or "postgres"
            )

            psql_args = ["psql", "-U", user, "-d", database, *extra_args]
            stdin_is_terminal = self.stdin_is_terminal()
            interactive = stdin_is_terminal and not any(
                arg in NON_INTERACTIVE_PSQL_FLAGS for arg in psql_args
            )

            if interactive:
                self.console.print(
                    f"Connecting to {name} as user '{user}' to database '{database}'..."
                )
                self.console.print("Type \\q to exit")
                self.console.print(SEPARATOR)

            docker_args = ["exec"]
            if interactive:
                docker_args.append("-it")
            elif not stdin_is_terminal:
                docker_args.append("-i")
            docker_args.append(name)
            docker_args.extend(psql_args)
            docker_mgr.run_interactive(*docker_args)

    # clean

    def handle_clean_command(self, args: Namespace) -> None:
        """
        Remove pgbox containers, data volumes and custom images.

        With --all, stock postgres base images are removed as well. Asks for
        confirmation unless --force is given.
        """
        include_base = getattr(args, "all", False)
        with self.docker_factory() as docker_mgr:
            self.console.print("Searching for pgbox resources...")
            containers = [
                c.name for c in docker_mgr.list_containers(PGBOX_PREFIX, include_stopped=True)
            ]
            volumes = [
                v
                for v in docker_mgr.list_volumes()
                if v.startswith(PGBOX_PREFIX) and v.endswith("-data")
            ]
            images = []
            for image in docker_mgr.list_images():
                if image.startswith(PGBOX_PREFIX):
                    images.append(image)
                elif include_base and image.startswith("postgres:"):
                    images.append(image)

            if not containers and not volumes and not images:
                self.console.print("No pgbox resources found to clean.")
                return

            self.console.print("\nThe following resources will be removed:")
            for label, items in (
                ("Containers", containers),
                ("Volumes", volumes),
                ("Images", images),
            ):
                if items:
                    self.console.print(f"\n{label} ({len(items)}):")
                    for item in items:
                        self.console.print(f"  - {item}")

            if not getattr(args, "force", False) and not prompt_confirm(
                "Remove these resources?"
            ):
                self.console.print("Cancelled.")
                return

            for container in containers:
                docker_mgr.remove_container(container)
            for volume in volumes:
                docker_mgr.remove_volume(volume)
            for image in images:
                docker_mgr.remove_image(image)
            self.console.print("Cleanup complete.", style="bold green")

    # list-extensions

    def handle_list_extensions_command(self, args: Namespace) -> None:
        """Print every catalog extension with where it comes from."""
        version = getattr(args, "version", None) or DEFAULT_VERSION
        validate_postgres_version(version)
        kind = getattr(args, "kind", None)

        names = self.catalog.list_all()
        if kind == "builtin":
            names = [n for n in names if self.catalog.lookup(n).kind == "builtin"]
        elif kind == "package":
            names = [n for n in names if self.catalog.lookup(n).kind != "builtin"]

        self.console.print(
            f"PostgreSQL {version} Extensions ({len(names)} available):\n"
        )
        for name in names:
            source = self.catalog.describe(name, version)
            self.console.print(f"{name:<30} {source}", markup=False, highlight=False)
