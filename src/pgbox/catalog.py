"""
Static catalog of PostgreSQL extensions pgbox knows how to install.

Each entry describes what an extension needs: an apt package, a direct .deb
or .zip download, a base image override, shared_preload_libraries entries,
GUC settings and the SQL that enables it. The catalog is read-only reference
data; build one with load_catalog() and pass it to whoever needs it.
"""

import platform
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

VERSION_PLACEHOLDER = "{v}"
ARCH_PLACEHOLDER = "{arch}"


class UnknownExtensionsError(ValueError):
    """Raised when one or more requested extensions are not in the catalog."""

    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__(f"unknown extensions: {', '.join(self.names)}")


@dataclass(frozen=True)
class ExtensionDescriptor:
    """
    Installation and configuration recipe for one extension.

    Attributes:
        name: Catalog key users request (e.g., "pgvector")
        package: apt package template (e.g., "postgresql-{v}-pgvector"), empty for contrib
        deb_url: .deb download URL template, supports {v} and {arch}
        zip_url: URL template of a .zip holding a .deb, supports {v} and {arch}
        base_image: Base image override template (e.g., "postgres:{v}-bookworm")
        sql_name: CREATE EXTENSION name when it differs from the key
        preload: shared_preload_libraries entries, in order
        gucs: Server configuration parameters
        init_sql: Custom initialization SQL, empty means a default CREATE EXTENSION
    """

    name: str
    package: str = ""
    deb_url: str = ""
    zip_url: str = ""
    base_image: str = ""
    sql_name: str = ""
    preload: tuple[str, ...] = ()
    gucs: Mapping[str, str] = field(default_factory=dict)
    init_sql: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "preload", tuple(self.preload))
        object.__setattr__(self, "gucs", MappingProxyType(dict(self.gucs)))

    @property
    def kind(self) -> str:
        """How the extension gets into the image."""
        if self.deb_url:
            return "deb"
        if self.zip_url:
            return "zip"
        if self.package:
            return "package"
        return "builtin"


def _substitute(template: str, version: str, arch: str = "") -> str:
    resolved = template.replace(VERSION_PLACEHOLDER, version)
    if arch:
        resolved = resolved.replace(ARCH_PLACEHOLDER, arch)
    return resolved


# Contrib modules shipped with the official image, no package needed
BUILTIN_EXTENSIONS = (
    "adminpack",
    "amcheck",
    "autoinc",
    "bloom",
    "btree_gin",
    "btree_gist",
    "citext",
    "cube",
    "dblink",
    "dict_int",
    "dict_xsyn",
    "earthdistance",
    "file_fdw",
    "fuzzystrmatch",
    "hstore",
    "insert_username",
    "intagg",
    "intarray",
    "isn",
    "lo",
    "ltree",
    "moddatetime",
    "old_snapshot",
    "pageinspect",
    "pg_buffercache",
    "pg_freespacemap",
    "pg_prewarm",
    "pg_stat_statements",
    "pg_surgery",
    "pg_trgm",
    "pg_visibility",
    "pg_walinspect",
    "pgcrypto",
    "pgrowlocks",
    "pgstattuple",
    "plpgsql",
    "postgres_fdw",
    "refint",
    "seg",
    "sslinfo",
    "tablefunc",
    "tcn",
    "tsm_system_rows",
    "tsm_system_time",
    "unaccent",
    "uuid-ossp",
    "xml2",
)

# Third-party extensions published by PGDG as postgresql-{v}-<name>
PGDG_PACKAGE_EXTENSIONS = (
    "age",
    "asn1oid",
    "auto-failover",
    "bgw-replstatus",
    "credcheck",
    "debversion",
    "decoderbufs",
    "dirtyread",
    "extra-window-functions",
    "first-last-agg",
    "h3",
    "hll",
    "http",
    "hypopg",
    "icu-ext",
    "ip4r",
    "jsquery",
    "londiste-sql",
    "mimeo",
    "mobilitydb",
    "mysql-fdw",
    "numeral",
    "ogr-fdw",
    "omnidb",
    "oracle-fdw",
    "orafce",
    "partman",
    "periods",
    "pg-catcheck",
    "pg-checksums",
    "pg-crash",
    "pg-fact-loader",
    "pg-failover-slots",
    "pg-gvm",
    "pg-hint-plan",
    "pg-permissions",
    "pg-qualstats",
    "pg-rewrite",
    "pg-rrule",
    "pg-stat-kcache",
    "pg-track-settings",
    "pg-wait-sampling",
    "pgaudit",
    "pgauditlogtofile",
    "pgextwlist",
    "pgfaceting",
    "pgfincore",
    "pgl-ddl-deploy",
    "pglogical",
    "pglogical-ticker",
    "pgmemcache",
    "pgmp",
    "pgnodemx",
    "pgpcre",
    "pgpool2",
    "pgq-node",
    "pgq3",
    "pgrouting",
    "pgrouting-doc",
    "pgrouting-scripts",
    "pgsentinel",
    "pgsphere",
    "pgtap",
    "pgtt",
    "pldebugger",
    "pljava",
    "pljs",
    "pllua",
    "plpgsql-check",
    "plprofiler",
    "plproxy",
    "plr",
    "plsh",
    "pointcloud",
    "postgis-3-scripts",
    "powa",
    "prefix",
    "preprepare",
    "prioritize",
    "q3c",
    "rational",
    "rdkit",
    "repack",
    "repmgr",
    "roaringbitmap",
    "rum",
    "semver",
    "set-user",
    "show-plans",
    "similarity",
    "slony1-2",
    "snakeoil",
    "squeeze",
    "statviz",
    "tablelog",
    "tdigest",
    "tds-fdw",
    "timescaledb",
    "toastinfo",
    "unit",
)

# Extensions that need more than a package
CUSTOM_EXTENSIONS = (
    ExtensionDescriptor(
        name="pgvector",
        package="postgresql-{v}-pgvector",
        sql_name="vector",
    ),
    ExtensionDescriptor(
        name="postgis-3",
        package="postgresql-{v}-postgis-3",
        sql_name="postgis",
        init_sql=(
            "-- Core PostGIS extension\n"
            "CREATE EXTENSION IF NOT EXISTS postgis;\n\n"
            "-- Grant usage on spatial_ref_sys to public\n"
            "GRANT SELECT ON spatial_ref_sys TO PUBLIC;"
        ),
    ),
    ExtensionDescriptor(
        name="pg_cron",
        package="postgresql-{v}-cron",
        preload=("pg_cron",),
        gucs={
            "cron.database_name": "postgres",
            "cron.max_running_jobs": "5",
        },
        init_sql=(
            "CREATE EXTENSION IF NOT EXISTS pg_cron;\n"
            "GRANT USAGE ON SCHEMA cron TO postgres;"
        ),
    ),
    ExtensionDescriptor(
        name="wal2json",
        package="postgresql-{v}-wal2json",
        preload=("wal2json",),
        gucs={
            "wal_level": "logical",
            "max_replication_slots": "10",
            "max_wal_senders": "10",
        },
        init_sql=(
            "-- wal2json logical decoding plugin is now available\n"
            "-- To use it, create a replication slot with:\n"
            "-- SELECT pg_create_logical_replication_slot('slot_name', 'wal2json');"
        ),
    ),
    ExtensionDescriptor(
        name="pg_search",
        deb_url=(
            "https://github.com/paradedb/paradedb/releases/download/v0.20.5/"
            "postgresql-{v}-pg-search_0.20.5-1PARADEDB-bookworm_{arch}.deb"
        ),
        base_image="postgres:{v}-bookworm",
        init_sql="CREATE EXTENSION IF NOT EXISTS pg_search;",
    ),
    # BM25 ranked text search, published for PostgreSQL 17 and 18 only
    ExtensionDescriptor(
        name="pg_textsearch",
        zip_url=(
            "https://github.com/timescale/pg_textsearch/releases/download/v0.1.0/"
            "pg-textsearch-v0.1.0-pg{v}-{arch}.zip"
        ),
        base_image="postgres:{v}-bookworm",
    ),
)


class Catalog:
    """
    Read-only lookup table from extension name to its descriptor.

    Args:
        descriptors: Extension descriptors; names must be unique

    Raises:
        ValueError: If two descriptors share a name
    """

    def __init__(self, descriptors: Iterable[ExtensionDescriptor]):
        entries: dict[str, ExtensionDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in entries:
                raise ValueError(f"Duplicate catalog entry '{descriptor.name}'")
            entries[descriptor.name] = descriptor
        self._entries = MappingProxyType(entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, name: str) -> ExtensionDescriptor | None:
        """Get the descriptor for an extension, or None if unknown."""
        return self._entries.get(name)

    def resolved_package(self, name: str, version: str) -> str:
        """apt package for the extension at a PostgreSQL version, empty if none."""
        descriptor = self.lookup(name)
        if not descriptor or not descriptor.package:
            return ""
        return _substitute(descriptor.package, version)

    def resolved_deb_url(self, name: str, version: str, arch: str) -> str:
        descriptor = self.lookup(name)
        if not descriptor or not descriptor.deb_url:
            return ""
        return _substitute(descriptor.deb_url, version, arch)

    def resolved_zip_url(self, name: str, version: str, arch: str) -> str:
        descriptor = self.lookup(name)
        if not descriptor or not descriptor.zip_url:
            return ""
        return _substitute(descriptor.zip_url, version, arch)

    def resolved_base_image(self, name: str, version: str) -> str:
        descriptor = self.lookup(name)
        if not descriptor or not descriptor.base_image:
            return ""
        return _substitute(descriptor.base_image, version)

    def resolved_sql_name(self, name: str) -> str:
        """Name to use in CREATE EXTENSION; falls back to the catalog key."""
        descriptor = self.lookup(name)
        if descriptor and descriptor.sql_name:
            return descriptor.sql_name
        return name

    def resolved_init_sql(self, name: str) -> str:
        """
        Initialization SQL for an extension.

        Returns the custom SQL when the entry defines one, otherwise a
        CREATE EXTENSION IF NOT EXISTS statement for its SQL name. Unknown
        extensions yield an empty string.
        """
        descriptor = self.lookup(name)
        if not descriptor:
            return ""
        if descriptor.init_sql:
            return descriptor.init_sql
        return f"CREATE EXTENSION IF NOT EXISTS {self.resolved_sql_name(name)};"

    def validate(self, names: Iterable[str]) -> None:
        """
        Check that every name is in the catalog.

        Raises:
            UnknownExtensionsError: Listing every unknown name, in request order
        """
        unknown = [name for name in names if name not in self._entries]
        if unknown:
            raise UnknownExtensionsError(unknown)

    def list_all(self) -> list[str]:
        """All extension names, sorted."""
        return sorted(self._entries)

    def describe(self, name: str, version: str) -> str:
        """Short human readable source of an extension for listings."""
        descriptor = self.lookup(name)
        if not descriptor:
            return ""
        if descriptor.kind == "package":
            return f"package ({self.resolved_package(name, version)})"
        return descriptor.kind


def load_catalog() -> Catalog:
    """Build the catalog of every extension pgbox supports."""
    descriptors = [ExtensionDescriptor(name=name) for name in BUILTIN_EXTENSIONS]
    descriptors.extend(
        ExtensionDescriptor(name=name, package=f"postgresql-{{v}}-{name}")
        for name in PGDG_PACKAGE_EXTENSIONS
    )
    descriptors.extend(CUSTOM_EXTENSIONS)
    return Catalog(descriptors)


def get_deb_arch() -> str:
    """Debian architecture of the host, used for {arch} in download URLs."""
    machine = platform.machine().lower()
    if machine in ("aarch64", "arm64"):
        return "arm64"
    return "amd64"
