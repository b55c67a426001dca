# src/emitter_client/handlers.py
from __future__ import annotations

from typing import Any, Dict, Hashable, Tuple


def _identity(thing: Any) -> Hashable:
    """Return an identity token for ``thing``.

    Bound methods are created fresh on every attribute access, so they are
    identified by their instance and function instead.
    """
    try:
        func = thing.__func__
        owner = thing.__self__
    except AttributeError:
        return id(thing)
    else:
        return (id(owner), id(func))


class HandlerMap:
    """Maps caller handlers to the wrappers registered on their behalf.

    Lookups go by object identity, so two equal-but-distinct callables are
    tracked separately. The key object is kept alive while mapped so its id
    cannot be reused by another object.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Tuple[Any, Any]] = {}

    def add(self, key: Any, value: Any) -> None:
        self._entries[_identity(key)] = (key, value)

    def get(self, key: Any) -> Any:
        try:
            return self._entries[_identity(key)][1]
        except KeyError:
            raise KeyError(f"{key!r} is not registered") from None

    def has(self, key: Any) -> bool:
        return _identity(key) in self._entries

    def remove(self, key: Any) -> None:
        self._entries.pop(_identity(key), None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Any) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._entries)
