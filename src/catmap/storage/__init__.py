"""Key-value storage engine contract and backends."""

from catmap.storage.base import IndexSpec, Page, StorageEngine, TableSpec

__all__ = ["IndexSpec", "Page", "StorageEngine", "TableSpec"]
