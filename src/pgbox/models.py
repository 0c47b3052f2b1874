"""
In-memory models of the files pgbox generates.

Every add/set method is idempotent and collections are kept sorted, so the
same logical input always renders to the same bytes.
"""

import hashlib
from dataclasses import dataclass, field


class GucConflictError(ValueError):
    """Raised when a GUC is set twice with different values."""


def sql_hash(content: str) -> str:
    """SHA-256 of whitespace-trimmed SQL, used to spot duplicate fragments."""
    return hashlib.sha256(content.strip().encode("utf-8")).hexdigest()


def _append_unique(values: list[str], items) -> list[str]:
    merged = set(values)
    merged.update(item for item in items if item)
    return sorted(merged)


@dataclass
class DockerfileModel:
    """
    Dockerfile contents: base image plus what to install on top of it.

    Attributes:
        base_image: Image for the FROM line (e.g., "postgres:17")
        apt_packages: Packages installed from the PGDG apt repository
        deb_urls: .deb files downloaded and installed with dpkg
        zip_urls: .zip archives holding a .deb, extracted then installed
        pg_major: Value for ARG PG_MAJOR, taken from the image tag when empty
    """

    base_image: str
    pg_major: str = ""
    apt_packages: list[str] = field(default_factory=list)
    deb_urls: list[str] = field(default_factory=list)
    zip_urls: list[str] = field(default_factory=list)

    def add_packages(self, packages: list[str]) -> None:
        self.apt_packages = _append_unique(self.apt_packages, packages)

    def add_deb_urls(self, urls: list[str]) -> None:
        self.deb_urls = _append_unique(self.deb_urls, urls)

    def add_zip_urls(self, urls: list[str]) -> None:
        self.zip_urls = _append_unique(self.zip_urls, urls)

    def has_install_steps(self) -> bool:
        return bool(self.apt_packages or self.deb_urls or self.zip_urls)


@dataclass
class ComposeModel:
    """Service definition for docker-compose.yml."""

    service_name: str
    container_name: str = ""
    image: str = ""
    build_path: str = ""
    pg_major: str = ""
    env: dict[str, str] = field(default_factory=dict)
    ports: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)

    def add_port(self, port: str) -> None:
        self.ports = _append_unique(self.ports, [port])

    def add_volume(self, volume: str) -> None:
        self.volumes = _append_unique(self.volumes, [volume])

    def add_network(self, network: str) -> None:
        self.networks = _append_unique(self.networks, [network])

    def set_env(self, key: str, value: str) -> None:
        self.env[key] = value


@dataclass
class PGConfModel:
    """PostgreSQL server settings required by the selected extensions."""

    shared_preload: list[str] = field(default_factory=list)
    gucs: dict[str, str] = field(default_factory=dict)
    require_restart: bool = False

    def add_shared_preload(self, *libraries: str) -> None:
        self.shared_preload = _append_unique(self.shared_preload, libraries)
        if self.shared_preload:
            self.require_restart = True

    def set_guc(self, key: str, value: str) -> None:
        """
        Set a server parameter.

        Reasserting the same value is a no-op.

        Raises:
            GucConflictError: If the key already holds a different value
        """
        existing = self.gucs.get(key)
        if existing is not None and existing != value:
            raise GucConflictError(
                f"conflicting values for GUC {key}: '{existing}' vs '{value}'"
            )
        self.gucs[key] = value

    def shared_preload_string(self) -> str:
        return ",".join(self.shared_preload)

    def sorted_gucs(self) -> list[tuple[str, str]]:
        return sorted(self.gucs.items())

    def is_empty(self) -> bool:
        return not self.shared_preload and not self.gucs


@dataclass(frozen=True)
class InitFragment:
    """A named block of initialization SQL."""

    name: str
    sha256: str
    content: str


@dataclass
class InitModel:
    """SQL run once when the database is first initialized."""

    fragments: list[InitFragment] = field(default_factory=list)

    def add_fragment(self, name: str, content: str) -> None:
        """Add a fragment unless one with the same trimmed content exists."""
        normalized = content.strip()
        digest = sql_hash(normalized)
        if any(fragment.sha256 == digest for fragment in self.fragments):
            return
        self.fragments.append(InitFragment(name=name, sha256=digest, content=normalized))

    def ordered_fragments(self) -> list[InitFragment]:
        return sorted(self.fragments, key=lambda fragment: fragment.name)
