"""CallStore implementations."""

from .pg import PgCallStore, PgStoreConfig, SCHEMA_DDL

__all__ = ["PgCallStore", "PgStoreConfig", "SCHEMA_DDL"]
