"""Push-based change subscriptions for inventory and recipes.

Services mark a collection as changed on the session they write with;
``session_scope()`` publishes the marks only after the outermost
transaction commits, so subscribers never see rolled-back state.

Usage:
    from kitchen_ledger.services import change_feed

    unsubscribe = change_feed.subscribe("inventory", on_change)
    ...
    unsubscribe()
"""

import threading
from typing import Callable, Dict, Iterable, List

from .logging_utils import get_service_logger

logger = get_service_logger(__name__)

PENDING_CHANGES_KEY = "kitchen_ledger.pending_changes"

_listeners: Dict[str, List[Callable[[], None]]] = {}
_lock = threading.Lock()


def subscribe(collection: str, listener: Callable[[], None]) -> Callable[[], None]:
    """
    Register a listener for committed changes to a collection.

    Args:
        collection: Collection name (e.g. "inventory", "recipes")
        listener: Zero-argument callable invoked after each committed change

    Returns:
        Callable that removes the listener
    """
    with _lock:
        _listeners.setdefault(collection, []).append(listener)

    def unsubscribe() -> None:
        with _lock:
            listeners = _listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

    return unsubscribe


def mark_changed(session, collection: str) -> None:
    """Record on the session that a collection was modified."""
    session.info.setdefault(PENDING_CHANGES_KEY, set()).add(collection)


def take_pending(session) -> set:
    """Remove and return the collections marked on the session."""
    return session.info.pop(PENDING_CHANGES_KEY, set())


def publish(collections: Iterable[str]) -> None:
    """
    Notify listeners of each changed collection.

    A failing listener is logged and does not stop delivery to the others;
    the data change it reacts to is already committed.
    """
    for collection in sorted(collections):
        with _lock:
            listeners = list(_listeners.get(collection, []))
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception(f"Change listener for '{collection}' failed")


def clear_listeners() -> None:
    """Drop every listener. Useful for testing."""
    with _lock:
        _listeners.clear()
