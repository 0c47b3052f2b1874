import subprocess
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

import docker
from docker.models.containers import Container

from .config import CONTAINER_PORT

if TYPE_CHECKING:
    from .config import PostgresConfig

PGBOX_PREFIX = "pgbox-"


class DockerCommandError(RuntimeError):
    """Raised when the Docker CLI or API reports a failure."""


@dataclass
class ContainerOptions:
    """
    Docker-specific options for running a PostgreSQL container.

    Attributes:
        name: Container name
        extra_env: Additional KEY=VALUE environment entries
        extra_args: Additional docker run flags (e.g., ["-d", "-v", "vol:/path"])
        command: Arguments passed to the postgres entrypoint
    """

    name: str
    extra_env: list[str] = field(default_factory=list)
    extra_args: list[str] = field(default_factory=list)
    command: list[str] = field(default_factory=list)


def build_postgres_args(pg_config: "PostgresConfig", opts: ContainerOptions) -> list[str]:
    """
    Build the docker run arguments for a PostgreSQL container.

    An empty password switches the server to trust authentication.
    """
    args = ["run", "--name", opts.name, "-p", f"{pg_config.port}:{CONTAINER_PORT}"]
    args.extend(["-e", f"POSTGRES_DB={pg_config.database}"])
    args.extend(["-e", f"POSTGRES_USER={pg_config.user}"])
    if pg_config.password:
        args.extend(["-e", f"POSTGRES_PASSWORD={pg_config.password}"])
    else:
        args.extend(["-e", "POSTGRES_HOST_AUTH_METHOD=trust"])

    for entry in opts.extra_env:
        args.extend(["-e", entry])

    args.extend(opts.extra_args)
    args.append(pg_config.image())
    args.extend(opts.command)
    return args


def select_pgbox_container(rows: list[tuple[str, str]]) -> str | None:
    """
    Pick the most likely pgbox container from (name, image) rows.

    Prefers containers named pgbox-*, then any container running a postgres:
    or pgbox custom image.

    Returns:
        Container name, or None if nothing matches
    """
    for name, _ in rows:
        if name.startswith(PGBOX_PREFIX):
            return name
    for name, image in rows:
        if image.startswith("postgres:") or image.startswith("pgbox-pg"):
            return name
    return None


def _container_image(container: Container) -> str:
    return container.attrs.get("Config", {}).get("Image", "")


def _container_ports(container: Container) -> str:
    mappings = []
    for port, bindings in sorted((container.ports or {}).items()):
        for binding in bindings or []:
            mappings.append(f"{binding.get('HostPort')}->{port}")
    return ", ".join(mappings)


class DockerManager:
    """
    Context manager for Docker operations pgbox needs.

    Queries go through the Docker SDK; long-running or interactive commands
    (run, build, logs, exec) go through the docker CLI so their output streams
    straight to the terminal.

    Example:
        with DockerManager() as docker_mgr:
            if docker_mgr.container_exists("pgbox-pg17"):
                docker_mgr.start_container("pgbox-pg17")
    """

    def __init__(self, executable: str = "docker"):
        self.client: Optional[docker.DockerClient] = None
        self.executable = executable

    def __enter__(self) -> "DockerManager":
        try:
            self.client = docker.from_env()
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Cannot connect to Docker: {e}") from e
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            self.client.close()

    def _require_client(self) -> docker.DockerClient:
        if self.client is None:
            raise DockerCommandError(
                "DockerManager not properly initialized. Use as context manager."
            )
        return self.client

    # CLI-backed operations

    def run_command(self, *args: str, capture: bool = False) -> str:
        """
        Run a docker CLI command.

        Args:
            *args: Arguments after the docker executable
            capture: Capture combined stdout/stderr instead of streaming it

        Returns:
            Captured output, or an empty string when streaming

        Raises:
            DockerCommandError: If docker cannot be started or exits non-zero;
                captured output is appended to the message
        """
        cmd = [self.executable, *args]
        try:
            if capture:
                result = subprocess.run(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=True,
                )
                return result.stdout or ""
            subprocess.run(cmd, check=True)
            return ""
        except subprocess.CalledProcessError as e:
            message = f"docker {args[0] if args else ''} failed with exit code {e.returncode}"
            if e.output:
                message = f"{message}: {e.output.strip()}"
            raise DockerCommandError(message) from e
        except FileNotFoundError as e:
            raise DockerCommandError(
                "Docker not found. Please ensure docker is installed."
            ) from e

    def run_postgres(self, pg_config: "PostgresConfig", opts: ContainerOptions) -> str:
        """
        Start a new PostgreSQL container.

        Detached runs capture docker's output (the container id); attached
        runs stream the server log until the user interrupts.
        """
        args = build_postgres_args(pg_config, opts)
        return self.run_command(*args, capture="-d" in opts.extra_args)

    def build_image(self, tag: str, context_dir: str, build_args: dict[str, str]) -> None:
        """Build an image from a directory holding a Dockerfile."""
        args = ["build", "-t", tag]
        for key, value in sorted(build_args.items()):
            args.extend(["--build-arg", f"{key}={value}"])
        args.append(context_dir)
        self.run_command(*args)

    def stream_logs(self, name: str, follow: bool = False) -> None:
        args = ["logs"]
        if follow:
            args.append("-f")
        args.append(name)
        self.run_command(*args)

    def run_interactive(self, *args: str) -> None:
        """Run a docker command attached to the user's terminal (e.g., exec -it)."""
        self.run_command(*args)

    # SDK-backed operations

    def get_container(self, name: str) -> Container | None:
        client = self._require_client()
        try:
            return client.containers.get(name)
        except docker.errors.NotFound:
            return None
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to inspect container {name}: {e}") from e

    def container_exists(self, name: str) -> bool:
        """Check for a container with exactly this name, running or stopped."""
        container = self.get_container(name)
        return container is not None and container.name == name

    def is_container_running(self, name: str) -> bool:
        container = self.get_container(name)
        return container is not None and container.status == "running"

    def image_exists(self, name: str) -> bool:
        client = self._require_client()
        try:
            client.images.get(name)
            return True
        except docker.errors.ImageNotFound:
            return False
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to inspect image {name}: {e}") from e

    def list_containers(
        self, prefix: str = PGBOX_PREFIX, include_stopped: bool = False
    ) -> list[Container]:
        """Containers whose name starts with prefix, sorted by name."""
        client = self._require_client()
        try:
            containers = client.containers.list(
                all=include_stopped, filters={"name": prefix}
            )
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to list containers: {e}") from e
        return sorted(
            (c for c in containers if c.name.startswith(prefix)), key=lambda c: c.name
        )

    def describe_containers(self, containers: list[Container]) -> list[dict[str, str]]:
        """Name, image, status and port mappings of each container."""
        return [
            {
                "name": container.name,
                "image": _container_image(container),
                "status": container.status,
                "ports": _container_ports(container),
            }
            for container in containers
        ]

    def find_pgbox_container(self) -> str | None:
        """Name of the running container most likely managed by pgbox."""
        client = self._require_client()
        try:
            containers = client.containers.list()
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to list containers: {e}") from e
        rows = [(c.name, _container_image(c)) for c in containers]
        return select_pgbox_container(rows)

    def get_container_env(self, name: str, var: str) -> str | None:
        container = self.get_container(name)
        if container is None:
            return None
        for entry in container.attrs.get("Config", {}).get("Env") or []:
            key, _, value = entry.partition("=")
            if key == var:
                return value
        return None

    def get_host_port(self, name: str) -> str | None:
        """Host port published for the container's PostgreSQL port."""
        container = self.get_container(name)
        if container is None:
            return None
        bindings = (container.ports or {}).get(f"{CONTAINER_PORT}/tcp") or []
        for binding in bindings:
            if binding.get("HostPort"):
                return binding["HostPort"]
        return None

    def _container_action(self, name: str, action: str) -> None:
        container = self.get_container(name)
        if container is None:
            raise DockerCommandError(f"No such container: {name}")
        try:
            if action == "remove":
                container.remove(force=True)
            else:
                getattr(container, action)()
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to {action} container {name}: {e}") from e

    def start_container(self, name: str) -> None:
        self._container_action(name, "start")

    def stop_container(self, name: str) -> None:
        self._container_action(name, "stop")

    def restart_container(self, name: str) -> None:
        self._container_action(name, "restart")

    def remove_container(self, name: str) -> None:
        self._container_action(name, "remove")

    def list_volumes(self) -> list[str]:
        client = self._require_client()
        try:
            return sorted(volume.name for volume in client.volumes.list())
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to list volumes: {e}") from e

    def remove_volume(self, name: str) -> None:
        client = self._require_client()
        try:
            client.volumes.get(name).remove(force=True)
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to remove volume {name}: {e}") from e

    def list_images(self) -> list[str]:
        """Every local image tag as repository:tag."""
        client = self._require_client()
        try:
            images = client.images.list()
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to list images: {e}") from e
        return sorted({tag for image in images for tag in image.tags})

    def remove_image(self, name: str) -> None:
        client = self._require_client()
        try:
            client.images.remove(image=name, force=True)
        except docker.errors.DockerException as e:
            raise DockerCommandError(f"Failed to remove image {name}: {e}") from e
