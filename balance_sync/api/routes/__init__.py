"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from balance_sync.api.routes import balances, connections, history, sources, sync

__all__ = [
    "balances",
    "connections",
    "history",
    "sources",
    "sync",
]
