"""Authorization gate for administrative sale operations."""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable


@runtime_checkable
class AuthorizationGate(Protocol):

    def is_admin(self, caller: str) -> bool:
        ...


class AdminGate:
    """Allow-list of administrator identities.

    Caller IDs are compared after stripping surrounding whitespace.
    """

    def __init__(self, admins: Iterable[str]) -> None:
        self._admins = {a.strip() for a in admins if a and a.strip()}
        if not self._admins:
            raise ValueError("At least one administrator is required")

    def is_admin(self, caller: str) -> bool:
        return caller.strip() in self._admins
