"""
pgbox: PostgreSQL in Docker with extensions.

This package starts PostgreSQL containers with extensions picked from a
static catalog, and exports the same setup as a standalone Docker Compose
project whose files can be edited around pgbox's own blocks.

Main components:
- catalog: Extension descriptors and lookups
- aggregator: Merges extension requirements and detects GUC conflicts
- models: Dockerfile, Compose, server config and init SQL models
- render: Anchor-preserving file rendering
- naming: Deterministic container and image names
- docker: Docker SDK and CLI operations
- orchestrator: Command workflows
"""

from .aggregator import AggregationResult, ExtensionConflictError, aggregate
from .catalog import Catalog, ExtensionDescriptor, UnknownExtensionsError, load_catalog
from .docker import DockerCommandError, DockerManager
from .models import GucConflictError
from .orchestrator import Orchestrator

__all__ = [
    # Catalog
    "Catalog",
    "ExtensionDescriptor",
    "UnknownExtensionsError",
    "load_catalog",
    # Aggregation
    "AggregationResult",
    "ExtensionConflictError",
    "GucConflictError",
    "aggregate",
    # Docker operations
    "DockerCommandError",
    "DockerManager",
    # Workflows
    "Orchestrator",
]
