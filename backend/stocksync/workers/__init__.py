"""
Background workers.

- auto_sync_worker: syncs orders for every connected account on an interval
"""

from stocksync.workers.auto_sync_worker import run_auto_sync_loop, run_auto_sync_once

__all__ = ["run_auto_sync_loop", "run_auto_sync_once"]
