"""
Render artifact models into files without clobbering manual edits.

Each generated file owns one anchored region between a BEGIN and END marker.
Re-rendering replaces only that region; everything above and below it is the
user's and is written back untouched.
"""

import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import ComposeModel, DockerfileModel, InitModel, PGConfModel

DOCKERFILE_NAME = "Dockerfile"
COMPOSE_FILE_NAME = "docker-compose.yml"
INIT_SQL_NAME = "init.sql"
PG_CONF_NAME = "postgresql.conf.pgbox"

PGDG_KEY_URL = "https://www.postgresql.org/media/keys/ACCC4CF8.asc"
PGDG_REPO_URL = "https://apt.postgresql.org/pub/repos/apt"


@dataclass(frozen=True)
class AnchorMarker:
    """Start and end lines delimiting the generated region of a file."""

    start: str
    end: str


DOCKERFILE_ANCHORS = AnchorMarker(start="# pgbox: BEGIN", end="# pgbox: END")
COMPOSE_ANCHORS = AnchorMarker(start="# pgbox: BEGIN", end="# pgbox: END")
PG_CONF_ANCHORS = AnchorMarker(start="# pgbox: BEGIN", end="# pgbox: END")
INIT_SQL_ANCHORS = AnchorMarker(start="-- pgbox: BEGIN", end="-- pgbox: END")
INIT_SQL_FRAGMENT_PREFIX = "-- pgbox:"


@dataclass
class ParsedFile:
    """
    A file split around its anchored region.

    Attributes:
        pre_anchor: Lines before the start marker, or the whole file without one
        anchored: Lines between the markers, replaced on the next render
        post_anchor: Lines after the end marker
        has_anchor: Whether a start marker was found
    """

    pre_anchor: list[str] = field(default_factory=list)
    anchored: list[str] = field(default_factory=list)
    post_anchor: list[str] = field(default_factory=list)
    has_anchor: bool = False


def _split_lines(content: str) -> list[str]:
    r"""Split on "\n" only, dropping one trailing "\r" per line."""
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def parse_file_with_anchors(path: Path | str, marker: AnchorMarker) -> ParsedFile:
    """
    Split an existing file into pre-anchor, anchored and post-anchor lines.

    A missing file parses as empty with has_anchor False. A start marker
    without a matching end marker treats the rest of the file as anchored.

    Args:
        path: File to read
        marker: Markers delimiting the generated region

    Returns:
        ParsedFile describing the three regions

    Raises:
        OSError: If the file exists but cannot be read
    """
    parsed = ParsedFile()
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            content = f.read()
    except FileNotFoundError:
        return parsed

    in_anchor = False
    found_end = False
    for line in _split_lines(content):
        if not parsed.has_anchor and marker.start in line:
            in_anchor = True
            parsed.has_anchor = True
            continue

        if in_anchor and marker.end in line:
            in_anchor = False
            found_end = True
            continue

        if in_anchor:
            parsed.anchored.append(line)
        elif not parsed.has_anchor:
            parsed.pre_anchor.append(line)
        elif found_end:
            parsed.post_anchor.append(line)

    return parsed


def replace_anchored(
    parsed: ParsedFile, marker: AnchorMarker, new_content: list[str]
) -> list[str]:
    """
    Rebuild a file's lines with new content in the anchored region.

    The marker block is emitted when there is new content, or when the file
    already had one so that the region stays discoverable.
    """
    lines = list(parsed.pre_anchor)
    if new_content or parsed.has_anchor:
        lines.append(marker.start)
        lines.extend(new_content)
        lines.append(marker.end)
    lines.extend(parsed.post_anchor)
    return lines


def write_lines(path: Path | str, lines: list[str]) -> None:
    """
    Write lines to a file with a single trailing newline.

    The content goes to a temporary file in the same directory which then
    replaces the target, so readers never see a partial file.
    """
    path = Path(path)
    content = "\n".join(lines)
    if lines and not content.endswith("\n"):
        content += "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def indent_lines(lines: list[str], spaces: int) -> list[str]:
    indent = " " * spaces
    return [f"{indent}{line}" if line else line for line in lines]


def _render_anchored_file(
    path: Path,
    marker: AnchorMarker,
    new_content: list[str],
    default_pre: list[str],
    default_post: list[str] | None = None,
) -> Path:
    parsed = parse_file_with_anchors(path, marker)
    if not parsed.has_anchor and not parsed.pre_anchor:
        parsed.pre_anchor = list(default_pre)
        if default_post:
            parsed.post_anchor = list(default_post)
    write_lines(path, replace_anchored(parsed, marker, new_content))
    return path


# Dockerfile


def _continued(commands: list[str]) -> list[str]:
    """Join shell commands into one RUN instruction with line continuations."""
    lines = ["RUN set -eux; \\"]
    for command in commands[:-1]:
        lines.append(f"    {command}; \\")
    lines.append(f"    {commands[-1]}")
    return lines


def generate_apt_install(packages: list[str]) -> list[str]:
    """RUN block adding the PGDG apt repository and installing packages."""
    if not packages:
        return []

    lines = [
        "# Install PostgreSQL extensions",
        "RUN set -eux; \\",
        "    apt-get update; \\",
    ]
    needs_pgdg = any(package.startswith("postgresql-") for package in packages)
    if needs_pgdg:
        lines.extend(
            [
                "    apt-get install -y --no-install-recommends curl gnupg ca-certificates lsb-release; \\",
                f"    curl -fsSL {PGDG_KEY_URL} | gpg --dearmor -o /usr/share/keyrings/postgresql.gpg; \\",
                '    echo "deb [signed-by=/usr/share/keyrings/postgresql.gpg] '
                f'{PGDG_REPO_URL} $(lsb_release -cs)-pgdg main" > /etc/apt/sources.list.d/pgdg.list; \\',
                "    apt-get update; \\",
            ]
        )

    lines.append("    apt-get install -y --no-install-recommends \\")
    for package in packages[:-1]:
        lines.append(f"        {package} \\")
    lines.append(f"        {packages[-1]}; \\")

    if needs_pgdg:
        lines.append("    apt-get purge -y --auto-remove curl gnupg lsb-release; \\")
    lines.append("    rm -rf /var/lib/apt/lists/*")
    return lines


def generate_deb_install(urls: list[str]) -> list[str]:
    """RUN block downloading .deb packages and installing them with dpkg."""
    if not urls:
        return []

    commands = [
        "apt-get update",
        "apt-get install -y --no-install-recommends curl ca-certificates",
    ]
    for index, url in enumerate(urls):
        commands.append(f'curl -fsSL -o /tmp/pgbox-ext-{index}.deb "{url}"')
    commands.extend(
        [
            "dpkg -i /tmp/pgbox-ext-*.deb || apt-get install -y -f --no-install-recommends",
            "rm -f /tmp/pgbox-ext-*.deb",
            "apt-get purge -y --auto-remove curl",
            "rm -rf /var/lib/apt/lists/*",
        ]
    )
    return ["# Install PostgreSQL extensions from .deb packages", *_continued(commands)]


def generate_zip_install(urls: list[str]) -> list[str]:
    """RUN block downloading .zip archives and installing the .deb inside each."""
    if not urls:
        return []

    commands = [
        "apt-get update",
        "apt-get install -y --no-install-recommends curl ca-certificates unzip",
    ]
    for index, url in enumerate(urls):
        archive = f"/tmp/pgbox-zip-{index}"
        commands.append(f'curl -fsSL -o {archive}.zip "{url}"')
        commands.append(f"unzip -o {archive}.zip -d {archive}")
    commands.extend(
        [
            "find /tmp -path '/tmp/pgbox-zip-*' -name '*.deb' -exec dpkg -i {} + "
            "|| apt-get install -y -f --no-install-recommends",
            "rm -rf /tmp/pgbox-zip-*",
            "apt-get purge -y --auto-remove curl unzip",
            "rm -rf /var/lib/apt/lists/*",
        ]
    )
    return ["# Install PostgreSQL extensions from .zip archives", *_continued(commands)]


def pg_major_from_image(image: str, default: str = "") -> str:
    """Major version from an image tag such as postgres:17 or postgres:17-bookworm."""
    match = re.search(r":(\d+)", image)
    return match.group(1) if match else default


def generate_dockerfile_header(model: DockerfileModel) -> list[str]:
    pg_major = model.pg_major or pg_major_from_image(model.base_image)
    header = []
    if pg_major:
        header.append(f"ARG PG_MAJOR={pg_major}")
    header.extend([f"FROM {model.base_image}", ""])
    return header


def generate_dockerfile_body(model: DockerfileModel) -> list[str]:
    blocks = [
        generate_apt_install(model.apt_packages),
        generate_deb_install(model.deb_urls),
        generate_zip_install(model.zip_urls),
    ]
    lines: list[str] = []
    for block in blocks:
        if not block:
            continue
        if lines:
            lines.append("")
        lines.extend(block)
    return lines


def render_dockerfile(model: DockerfileModel, output_dir: Path | str) -> Path:
    """Write or update the Dockerfile in output_dir."""
    return _render_anchored_file(
        Path(output_dir) / DOCKERFILE_NAME,
        DOCKERFILE_ANCHORS,
        generate_dockerfile_body(model),
        generate_dockerfile_header(model),
    )


# docker-compose.yml

HEALTHCHECK = {
    "test": [
        "CMD-SHELL",
        "pg_isready -U ${POSTGRES_USER:-postgres} -d ${POSTGRES_DB:-postgres}",
    ],
    "interval": "10s",
    "timeout": "5s",
    "retries": 5,
}


def postgres_command(pg_conf: PGConfModel | None) -> list[str]:
    """postgres server arguments carrying preload libraries and GUCs."""
    if pg_conf is None or pg_conf.is_empty():
        return []
    command = ["postgres"]
    if pg_conf.shared_preload:
        command.extend(["-c", f"shared_preload_libraries={pg_conf.shared_preload_string()}"])
    for key, value in pg_conf.sorted_gucs():
        if key == "shared_preload_libraries":
            continue
        command.extend(["-c", f"{key}={value}"])
    return command


def compose_container_name(model: ComposeModel) -> str:
    if model.container_name:
        return model.container_name
    if model.service_name == "db":
        return "pgbox-postgres"
    return f"pgbox-{model.service_name}"


def generate_compose_service(
    model: ComposeModel, pg_conf: PGConfModel | None = None
) -> list[str]:
    service: dict = {}
    if model.build_path:
        build = {"context": model.build_path, "dockerfile": DOCKERFILE_NAME}
        pg_major = model.pg_major or pg_major_from_image(model.image)
        if pg_major:
            build["args"] = {"PG_MAJOR": pg_major}
        service["build"] = build
    elif model.image:
        service["image"] = model.image

    service["container_name"] = compose_container_name(model)
    if model.env:
        service["environment"] = dict(sorted(model.env.items()))

    command = postgres_command(pg_conf)
    if command:
        service["command"] = command
    if model.ports:
        service["ports"] = list(model.ports)
    if model.volumes:
        service["volumes"] = list(model.volumes)
    service["healthcheck"] = HEALTHCHECK
    if model.networks:
        service["networks"] = list(model.networks)

    document = {"services": {model.service_name: service}}
    return yaml.safe_dump(
        document, default_flow_style=False, sort_keys=False
    ).splitlines()


def named_volumes(model: ComposeModel) -> list[str]:
    """Volume sources that are named volumes rather than host paths."""
    names = []
    for volume in model.volumes:
        source = volume.split(":", 1)[0]
        if source and not source.startswith((".", "/", "~", "$")):
            names.append(source)
    return sorted(set(names))


def render_compose(
    model: ComposeModel, pg_conf: PGConfModel | None, output_dir: Path | str
) -> Path:
    """Write or update docker-compose.yml in output_dir."""
    volumes = named_volumes(model)
    default_post = []
    if volumes:
        default_post = ["", "volumes:", *[f"  {name}:" for name in volumes]]
    return _render_anchored_file(
        Path(output_dir) / COMPOSE_FILE_NAME,
        COMPOSE_ANCHORS,
        generate_compose_service(model, pg_conf),
        ["# Generated by pgbox. Edits outside the pgbox block are preserved."],
        default_post,
    )


# init.sql


def generate_init_sql_body(model: InitModel) -> list[str]:
    lines: list[str] = []
    for fragment in model.ordered_fragments():
        if lines:
            lines.append("")
        lines.append(f"{INIT_SQL_FRAGMENT_PREFIX} begin {fragment.name}")
        lines.extend(fragment.content.splitlines())
        lines.append(f"{INIT_SQL_FRAGMENT_PREFIX} end {fragment.name}")
    return lines


def render_init_sql(model: InitModel, output_dir: Path | str) -> Path:
    """Write or update init.sql in output_dir."""
    return _render_anchored_file(
        Path(output_dir) / INIT_SQL_NAME,
        INIT_SQL_ANCHORS,
        generate_init_sql_body(model),
        [
            "-- Generated by pgbox",
            "-- Runs once, when the data directory is first initialized.",
            "",
        ],
    )


# postgresql.conf.pgbox

_BARE_CONF_VALUE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def conf_value(value: str) -> str:
    """Quote a value for postgresql.conf unless it is a bare word or number."""
    if _BARE_CONF_VALUE.match(value):
        return value
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def generate_pg_conf_body(pg_conf: PGConfModel) -> list[str]:
    lines = []
    if pg_conf.shared_preload:
        lines.append(f"shared_preload_libraries = '{pg_conf.shared_preload_string()}'")
    for key, value in pg_conf.sorted_gucs():
        if key == "shared_preload_libraries":
            continue
        lines.append(f"{key} = {conf_value(value)}")
    return lines


def render_postgresql_conf(pg_conf: PGConfModel, output_dir: Path | str) -> Path | None:
    """
    Write or update postgresql.conf.pgbox in output_dir.

    Nothing is written when there are no preload libraries or GUCs.

    Returns:
        Path of the written file, or None if nothing needed configuring
    """
    if pg_conf.is_empty():
        return None
    header = [
        "# Generated by pgbox",
        "# Server settings required by the selected extensions.",
        "# Include it from postgresql.conf with: include 'postgresql.conf.pgbox'",
        "# or apply each line with: ALTER SYSTEM SET <name> = <value>;",
    ]
    if pg_conf.require_restart:
        header.append("# shared_preload_libraries changes require a server restart.")
    header.append("")
    return _render_anchored_file(
        Path(output_dir) / PG_CONF_NAME,
        PG_CONF_ANCHORS,
        generate_pg_conf_body(pg_conf),
        header,
    )
