"""Storage adapters implementing PatientStoragePort."""

from recordguard.adapters.storage.duckdb_adapter import DuckDBAdapter
from recordguard.adapters.storage.postgresql_adapter import PostgreSQLAdapter

__all__ = ["DuckDBAdapter", "PostgreSQLAdapter"]
