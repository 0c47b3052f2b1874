"""
Deterministic container and image names.

Names include a hash of the requested extensions' full catalog definitions,
so changing an entry (a GUC default, the init SQL) produces a new image even
when the requested names are the same.
"""

import hashlib

from .catalog import Catalog

NAME_PREFIX = "pgbox"
HASH_LENGTH = 16


def extension_hash(catalog: Catalog, extensions: list[str]) -> str:
    """
    Hash the sorted extension names together with their resolved configuration.

    Returns:
        First 16 hex characters of the SHA-256 digest, empty if no extensions
    """
    if not extensions:
        return ""

    digest = hashlib.sha256()
    for name in sorted(set(extensions)):
        digest.update(name.encode("utf-8"))
        descriptor = catalog.lookup(name)
        if descriptor is None:
            continue
        digest.update(descriptor.package.encode("utf-8"))
        # download sources and base image change the built image too
        for source in (descriptor.deb_url, descriptor.zip_url, descriptor.base_image):
            digest.update(source.encode("utf-8"))
        digest.update(",".join(descriptor.preload).encode("utf-8"))
        for key, value in sorted(descriptor.gucs.items()):
            digest.update(f"{key}={value}".encode("utf-8"))
        digest.update(catalog.resolved_init_sql(name).encode("utf-8"))

    return digest.hexdigest()[:HASH_LENGTH]


def container_name(
    catalog: Catalog, version: str, extensions: list[str], prefix: str = NAME_PREFIX
) -> str:
    """Container name: <prefix>-pg<version>, plus -<hash> with extensions."""
    base = f"{prefix}-pg{version}"
    ext_hash = extension_hash(catalog, extensions)
    if ext_hash:
        return f"{base}-{ext_hash}"
    return base


def image_name(
    catalog: Catalog, version: str, extensions: list[str], prefix: str = NAME_PREFIX
) -> str:
    """Image for a container: stock postgres:<version>, or a tagged custom build."""
    if not extensions:
        return f"postgres:{version}"
    return f"{prefix}-pg{version}-custom:{extension_hash(catalog, extensions)}"


def volume_name(container: str) -> str:
    return f"{container}-data"
