"""Sync engine for blobsync - reconciliation and change push."""

from .dispatcher import ChangeDispatcher, ChangeEvent, ChangeKind
from .engine import SyncEngine
from .operations import SyncOperations
from .reconcile import Reconciler
from .store import RemoteStore, UnavailableStore
from .watcher import SyncEventHandler

__all__ = [
    "SyncEngine",
    "ChangeDispatcher",
    "ChangeEvent",
    "ChangeKind",
    "SyncOperations",
    "Reconciler",
    "RemoteStore",
    "UnavailableStore",
    "SyncEventHandler",
]
