from __future__ import annotations

from typing import Protocol


class SessionBackend(Protocol):
    name: str

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...
