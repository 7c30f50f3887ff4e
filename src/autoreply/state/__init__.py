"""Reply ledger persistence package.

Provides SQLite-backed storage for the record of threads already replied
to or permanently skipped.
"""

from autoreply.state.schema import close_ledger_db, init_ledger_table, open_ledger_db
from autoreply.state.store import ReplyLedger

__all__ = [
    "ReplyLedger",
    "close_ledger_db",
    "init_ledger_table",
    "open_ledger_db",
]
