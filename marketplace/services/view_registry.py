"""
Registry of mounted views (checkout machines, feedback threads)
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Generic, TypeVar
from marketplace.errors import NotFoundError

logger = logging.getLogger(__name__)

V = TypeVar("V")


class _Entry(Generic[V]):
    def __init__(self, view: V):
        self.view = view
        self.last_seen = datetime.now()


class ViewRegistry(Generic[V]):
    """Holds views by id; each view belongs to exactly one page"""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[str, _Entry[V]] = {}

    def add(self, view: V) -> str:
        view_id = uuid.uuid4().hex
        self._entries[view_id] = _Entry(view)
        return view_id

    def get(self, view_id: str) -> V:
        entry = self._entries.get(view_id)
        if entry is None:
            raise NotFoundError("This page has expired. Please reload it.")
        entry.last_seen = datetime.now()
        return entry.view

    def remove(self, view_id: str) -> bool:
        entry = self._entries.pop(view_id, None)
        if entry is None:
            return False
        entry.view.close()
        return True

    def purge_idle(self, max_idle: timedelta) -> int:
        """Close views not accessed within max_idle; returns how many"""
        cutoff = datetime.now() - max_idle
        stale = [view_id for view_id, entry in self._entries.items() if entry.last_seen < cutoff]
        for view_id in stale:
            self.remove(view_id)
        if stale:
            logger.debug("%s: purged %d idle views", self.name, len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, view_id: str) -> bool:
        return view_id in self._entries


# Global registries
_checkout_registry = None
_feedback_registry = None


def get_checkout_registry() -> ViewRegistry:
    """Get or create the checkout view registry"""
    global _checkout_registry
    if _checkout_registry is None:
        _checkout_registry = ViewRegistry("checkout")
    return _checkout_registry


def get_feedback_registry() -> ViewRegistry:
    """Get or create the feedback view registry"""
    global _feedback_registry
    if _feedback_registry is None:
        _feedback_registry = ViewRegistry("feedback")
    return _feedback_registry
