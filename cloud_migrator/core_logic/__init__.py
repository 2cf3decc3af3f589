from .catalog import CatalogBuilder, build_catalog, merge_catalog
from .directory_replicator import DirectoryReplicator
from .migrator import Migrator
from .stub_resolver import FetchState, StubResolver

__all__ = [
    "CatalogBuilder",
    "build_catalog",
    "merge_catalog",
    "DirectoryReplicator",
    "Migrator",
    "FetchState",
    "StubResolver",
]
