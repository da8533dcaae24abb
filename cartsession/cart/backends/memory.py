from __future__ import annotations

from cartsession.cart.backends.base import SessionBackend


class MemorySessionBackend(SessionBackend):
    name = "memory"

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self.writes = 0

    def get(self, key: str) -> str | None:
        return self._records.get(key)

    def set(self, key: str, value: str) -> None:
        self._records[key] = value
        self.writes += 1

    def remove(self, key: str) -> None:
        self._records.pop(key, None)
