"""
Key/value state store with subscriptions and atomic batch writes.

Keys are flat strings (conventionally dotted, see StateKey). get_path()
resolves the longest stored key prefix and then walks nested mappings for
the remainder of the path.

Batch writes go through an explicit Transaction object: writes are
buffered, applied together on commit, and observers are notified only after
every write has landed. A transaction that exits with an exception is
discarded and reported through `state:error`.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import STATE_HISTORY_LIMIT
from simon.messaging.events import StateErrorEvent, StateRestoredEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from types import TracebackType

    from simon.messaging.bus import EventBus

    ChangeCallback = Callable[[StateChange], None]

logger = structlog.get_logger()

WILDCARD = "*"
_MISSING = object()


class StateKey(StrEnum):
    """Standard keys shared between components."""

    SELECTED_PATTERN = "pattern.selected"
    PATTERN_SEQUENCE = "pattern.sequence"
    PATTERN_INDEX = "pattern.index"

    RECENT_PLAYS = "selection.recentPlays"

    CURRENT_PERFORMANCE = "performance.current"

    SYSTEM_READY = "system.ready"


@dataclass(frozen=True)
class StateChange:
    key: str
    new_value: Any
    old_value: Any
    timestamp: float


class Transaction:
    """
    Buffered batch of writes against a StateStore.

    Use as a context manager: the batch commits on a clean exit and is
    discarded if the block raises. Reads inside the transaction see its own
    pending writes.
    """

    def __init__(self, store: StateStore, *, nested: bool = False) -> None:
        self._store = store
        self._nested = nested
        self._writes: dict[str, Any] = {}
        self._closed = False

    def get(self, key: str, default: Any = None) -> Any:
        value = self._writes.get(key, _MISSING)
        if value is _MISSING:
            return self._store.get(key, default)
        if value is _DELETED:
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self._ensure_open()
        self._writes[key] = value

    def delete(self, key: str) -> None:
        self._ensure_open()
        self._writes[key] = _DELETED

    @property
    def pending_keys(self) -> list[str]:
        return list(self._writes)

    def commit(self) -> None:
        self._ensure_open()
        self._closed = True
        self._store._apply(self._writes)  # noqa: SLF001

    def discard(self) -> None:
        self._closed = True
        self._writes.clear()

    def __enter__(self) -> Transaction:
        if self._nested:
            return self._store.active_transaction or self
        self._store.active_transaction = self
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._nested:
            return
        self._store.active_transaction = None
        if exc is None:
            self.commit()
            return
        keys = self.pending_keys
        self.discard()
        logger.warning("state transaction discarded", keys=keys, error=str(exc))
        self._store.report_error(str(exc), keys)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("transaction already closed")


class _Deleted:
    def __repr__(self) -> str:
        return "<deleted>"


_DELETED = _Deleted()


class StateStore:
    """Central key/value state with per-key and wildcard subscribers."""

    def __init__(self, bus: EventBus | None = None, history_limit: int = STATE_HISTORY_LIMIT) -> None:
        self._bus = bus
        self._state: dict[str, Any] = {}
        self._subscribers: dict[str, list[ChangeCallback]] = {}
        self._history: deque[StateChange] = deque(maxlen=history_limit)
        self.active_transaction: Transaction | None = None

    # --- Reads ---

    def get(self, key: str, default: Any = None) -> Any:
        return self._state.get(key, default)

    def get_multiple(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: self.get(key) for key in keys}

    def get_path(self, path: str, default: Any = None) -> Any:
        """Resolve a dotted path through stored keys and nested mappings."""
        parts = path.split(".")
        for split in range(len(parts), 0, -1):
            key = ".".join(parts[:split])
            if key not in self._state:
                continue
            current = self._state[key]
            for part in parts[split:]:
                if isinstance(current, dict) and part in current:
                    current = current[part]
                else:
                    return default
            return current
        return default

    # --- Writes ---

    def set(self, key: str, value: Any, *, notify: bool = True) -> None:
        if self.active_transaction is not None:
            self.active_transaction.set(key, value)
            return
        old_value = self._state.get(key)
        self._state[key] = value
        self._record_change(key, old_value, value)
        if notify and old_value != value:
            self._notify(key, value, old_value)

    def set_multiple(self, updates: Mapping[str, Any], *, notify: bool = True) -> None:
        if self.active_transaction is not None:
            for key, value in updates.items():
                self.active_transaction.set(key, value)
            return
        self._apply(updates, notify=notify)

    def delete(self, key: str) -> bool:
        if self.active_transaction is not None:
            self.active_transaction.delete(key)
            return True
        if key not in self._state:
            return False
        old_value = self._state.pop(key)
        self._record_change(key, old_value, None)
        self._notify(key, None, old_value)
        return True

    def clear(self) -> None:
        old_state = self._state
        self._state = {}
        for key, value in old_state.items():
            self._notify(key, None, value)

    def transaction(self) -> Transaction:
        """Start a batch; inside an open batch, the returned object joins it."""
        if self.active_transaction is not None:
            return Transaction(self, nested=True)
        return Transaction(self)

    # --- Subscriptions ---

    def subscribe(self, keys: str | Iterable[str], callback: ChangeCallback) -> Callable[[], None]:
        key_list = [keys] if isinstance(keys, str) else list(keys)
        for key in key_list:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            for key in key_list:
                callbacks = self._subscribers.get(key)
                if callbacks and callback in callbacks:
                    callbacks.remove(callback)
                    if not callbacks:
                        del self._subscribers[key]

        return unsubscribe

    def subscribe_all(self, callback: ChangeCallback) -> Callable[[], None]:
        return self.subscribe(WILDCARD, callback)

    # --- Snapshots ---

    def snapshot(self) -> dict[str, Any]:
        return dict(self._state)

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        """Replace the whole state with a snapshot, notifying changed keys."""
        old_state = self._state
        self._state = dict(snapshot)
        for key in set(old_state) | set(self._state):
            old_value = old_state.get(key)
            new_value = self._state.get(key)
            if old_value != new_value:
                self._record_change(key, old_value, new_value)
                self._notify(key, new_value, old_value)
        if self._bus is not None:
            self._bus.emit(StateRestoredEvent(source="state_store"))

    # --- History and stats ---

    def get_history(self, key: str | None = None) -> list[StateChange]:
        if key is None:
            return list(self._history)
        return [change for change in self._history if change.key == key]

    def clear_history(self) -> None:
        self._history.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "state_keys": len(self._state),
            "subscribers": len(self._subscribers),
            "history_size": len(self._history),
            "in_transaction": self.active_transaction is not None,
        }

    def report_error(self, error: str, keys: list[str]) -> None:
        if self._bus is not None:
            self._bus.emit(StateErrorEvent(error=error, keys=keys))

    # --- Internals ---

    def _apply(self, writes: Mapping[str, Any], *, notify: bool = True) -> None:
        changes: list[tuple[str, Any, Any]] = []
        for key, value in writes.items():
            old_value = self._state.get(key)
            if value is _DELETED:
                if key not in self._state:
                    continue
                del self._state[key]
                value = None
            else:
                self._state[key] = value
            self._record_change(key, old_value, value)
            if notify and old_value != value:
                changes.append((key, value, old_value))

        for key, new_value, old_value in changes:
            self._notify(key, new_value, old_value)

    def _record_change(self, key: str, old_value: Any, new_value: Any) -> None:
        self._history.append(StateChange(key=key, new_value=new_value, old_value=old_value, timestamp=time.time()))

    def _notify(self, key: str, new_value: Any, old_value: Any) -> None:
        change = StateChange(key=key, new_value=new_value, old_value=old_value, timestamp=time.time())
        for callback in [*self._subscribers.get(key, []), *self._subscribers.get(WILDCARD, [])]:
            try:
                callback(change)
            except Exception:
                logger.exception("state subscriber failed", key=key)
