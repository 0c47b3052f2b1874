"""
Merge the requirements of a set of extensions into one configuration.

aggregate() validates the request against the catalog, then combines packages,
download URLs, preload libraries, GUCs and init SQL. GUC conflicts are
collected over the whole request and reported together.
"""

from dataclasses import dataclass, field

from .catalog import Catalog
from .models import sql_hash


@dataclass(frozen=True)
class GucConflict:
    """
    Competing values for one server parameter.

    Attributes:
        key: GUC name (e.g., "wal_level")
        sources: (extension, value) pairs, sorted by extension name
    """

    key: str
    sources: tuple[tuple[str, str], ...]

    @property
    def extensions(self) -> list[str]:
        return [name for name, _ in self.sources]

    @property
    def values(self) -> list[str]:
        return [value for _, value in self.sources]

    def describe(self) -> str:
        parts = ", ".join(f"{name} sets '{value}'" for name, value in self.sources)
        return f"GUC conflict for '{self.key}': {parts}"


class ExtensionConflictError(ValueError):
    """Raised when requested extensions disagree on a server parameter."""

    def __init__(self, conflicts: list[GucConflict]):
        self.conflicts = list(conflicts)
        details = "; ".join(conflict.describe() for conflict in self.conflicts)
        super().__init__(f"extension configuration conflict: {details}")


@dataclass
class AggregationResult:
    """Combined requirements of the requested extensions."""

    extensions: list[str]
    base_image: str
    packages: list[str] = field(default_factory=list)
    deb_urls: list[str] = field(default_factory=list)
    zip_urls: list[str] = field(default_factory=list)
    preload: list[str] = field(default_factory=list)
    gucs: dict[str, str] = field(default_factory=dict)
    guc_sources: dict[str, str] = field(default_factory=dict)
    conflicts: list[GucConflict] = field(default_factory=list)
    # (fragment name, SQL) pairs
    sql_fragments: list[tuple[str, str]] = field(default_factory=list)

    @property
    def needs_custom_image(self) -> bool:
        return bool(self.packages or self.deb_urls or self.zip_urls)


def _unique_sorted(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return sorted(seen)


def _collect_gucs(
    catalog: Catalog, names: list[str]
) -> tuple[dict[str, str], dict[str, str], list[GucConflict]]:
    gucs: dict[str, str] = {}
    sources: dict[str, str] = {}
    contributions: dict[str, dict[str, str]] = {}

    # the first extension by name is recorded as the source
    for name in sorted(set(names)):
        descriptor = catalog.lookup(name)
        if descriptor is None:
            continue
        for key, value in descriptor.gucs.items():
            contributions.setdefault(key, {})[name] = value
            if key not in gucs:
                gucs[key] = value
                sources[key] = name

    conflicts = []
    for key in sorted(contributions):
        by_extension = contributions[key]
        if len(set(by_extension.values())) > 1:
            conflicts.append(GucConflict(key, tuple(sorted(by_extension.items()))))

    return dict(sorted(gucs.items())), dict(sorted(sources.items())), conflicts


def _collect_sql(catalog: Catalog, names: list[str]) -> list[tuple[str, str]]:
    fragments: list[tuple[str, str]] = []
    hashes: set[str] = set()
    for name in sorted(set(names)):
        sql = catalog.resolved_init_sql(name).strip()
        if not sql:
            continue
        digest = sql_hash(sql)
        if digest in hashes:
            continue
        hashes.add(digest)
        fragments.append((name, sql))
    return fragments


def resolve_base_image(catalog: Catalog, names: list[str], version: str) -> str:
    """First base image override among the requested extensions, else postgres:<version>."""
    for name in names:
        override = catalog.resolved_base_image(name, version)
        if override:
            return override
    return f"postgres:{version}"


def aggregate(
    catalog: Catalog, names: list[str], version: str, arch: str
) -> AggregationResult:
    """
    Combine the requirements of the requested extensions.

    Args:
        catalog: Extension catalog to resolve names against
        names: Requested extension names, in the caller's order
        version: PostgreSQL major version (e.g., "17")
        arch: Debian architecture for download URLs (e.g., "amd64")

    Returns:
        AggregationResult with sorted, deduplicated collections

    Raises:
        UnknownExtensionsError: If any name is not in the catalog
        ExtensionConflictError: If extensions set different values for a GUC,
            listing every conflicting key
    """
    catalog.validate(names)

    result = AggregationResult(
        extensions=sorted(set(names)),
        base_image=resolve_base_image(catalog, names, version),
        packages=_unique_sorted(
            [catalog.resolved_package(name, version) for name in names]
        ),
        deb_urls=_unique_sorted(
            [catalog.resolved_deb_url(name, version, arch) for name in names]
        ),
        zip_urls=_unique_sorted(
            [catalog.resolved_zip_url(name, version, arch) for name in names]
        ),
        preload=_unique_sorted(
            [lib for name in names for lib in catalog.lookup(name).preload]
        ),
        sql_fragments=_collect_sql(catalog, names),
    )

    result.gucs, result.guc_sources, result.conflicts = _collect_gucs(catalog, names)
    if result.conflicts:
        raise ExtensionConflictError(result.conflicts)

    return result
