"""
Tag-keyed result cache.

Entries never expire on their own; they are dropped when any of their tags is
passed to ``revalidate_cache``. Mutating services call it at the end of every
successful write.
"""
import copy
import functools
import threading
from typing import Any, Callable, Dict, Hashable, Iterable, Set, Tuple

import structlog

from .config import settings


logger = structlog.get_logger(__name__)


class CacheTags:
    MACHINES = "machines"
    PARTS = "parts"
    CUSTOMERS = "customers"
    TECHNICIANS = "technicians"
    TICKETS = "tickets"
    CALL_ADMINS = "call-admins"
    WORK_LOGS = "work-logs"
    REPORTS = "reports"

    @staticmethod
    def call_admin(user_id: str) -> str:
        return f"{CacheTags.CALL_ADMINS}-{user_id}"

    @staticmethod
    def ticket_work_logs(ticket_id: str) -> str:
        return f"{CacheTags.WORK_LOGS}-{ticket_id}"


class TagCache:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[Hashable, Tuple[Any, Set[str]]] = {}
        self._by_tag: Dict[str, Set[Hashable]] = {}

    def get(self, key: Hashable) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            return True, copy.deepcopy(entry[0])

    def set(self, key: Hashable, value: Any, tags: Iterable[str]) -> None:
        tag_set = set(tags)
        with self._lock:
            self._discard(key)
            self._entries[key] = (copy.deepcopy(value), tag_set)
            for tag in tag_set:
                self._by_tag.setdefault(tag, set()).add(key)

    def revalidate(self, tags: Iterable[str]) -> int:
        dropped = 0
        with self._lock:
            for tag in tags:
                for key in list(self._by_tag.pop(tag, ())):
                    if self._discard(key):
                        dropped += 1
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_tag.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _discard(self, key: Hashable) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry[1]:
            keys = self._by_tag.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    self._by_tag.pop(tag, None)
        return True


cache = TagCache()


def cached_query(key: str, tags: Iterable[str] = (), tag_args: Callable[..., Iterable[str]] = None):
    """
    Cache the result of ``fn(db, *args)`` until one of its tags is revalidated.

    The session argument is not part of the cache key; positional arguments
    after it are. ``tag_args`` derives extra per-call tags from those arguments.
    """
    static_tags = tuple(tags)

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(db, *args):
            if not settings.cache_enabled:
                return fn(db, *args)
            cache_key = (key, *args)
            hit, value = cache.get(cache_key)
            if hit:
                return value
            value = fn(db, *args)
            entry_tags = list(static_tags)
            if tag_args is not None:
                entry_tags.extend(tag_args(*args))
            cache.set(cache_key, value, entry_tags)
            return value

        return wrapper

    return decorator


def revalidate_cache(tags: Iterable[str]) -> None:
    tags = list(tags)
    dropped = cache.revalidate(tags)
    logger.debug("cache_revalidated", tags=tags, dropped=dropped)
