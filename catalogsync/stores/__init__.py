"""SQL-backed catalog, credential and ledger stores."""

from catalogsync.stores.catalog import SqlCatalogStore
from catalogsync.stores.credentials import SqlCredentialStore
from catalogsync.stores.ledger import SqlLedger

__all__ = ["SqlCatalogStore", "SqlCredentialStore", "SqlLedger"]
