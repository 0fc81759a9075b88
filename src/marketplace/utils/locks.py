"""Named in-process locks.

A ``KeyedLocks`` registry hands out one re-entrant lock per key for as long
as some thread holds or waits for it, and forgets the key afterwards. Code
pools are locked per product, carts per owner and promotions per code, so
unrelated keys never contend.

``unit_of_work_lock`` is the one lock every command commits under (see
``marketplace.utils.dispatch``). Keyed locks are always taken before it,
never while holding it.
"""

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from threading import Lock, RLock

unit_of_work_lock = RLock()


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = RLock()
        self.users = 0


class KeyedLocks:
    """Registry of re-entrant locks keyed by string."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            with entry.lock:
                yield
        finally:
            self._checkin(key, entry)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for all ``keys`` for the duration of the block.

        Keys are acquired in sorted order so two callers asking for the same
        set of keys can never deadlock on each other.
        """
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._locked(key))
            yield

    def __len__(self) -> int:
        """Number of keys currently held or waited for."""
        with self._guard:
            return len(self._entries)
