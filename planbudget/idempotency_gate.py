from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from planbudget.errors import ValidationError


class GenerationDomain:
    FIXED = "fixed"
    INSTALLMENT = "installment"
    values = {FIXED, INSTALLMENT}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValidationError("Generation domain must be fixed or installment.")
        return normalized


class MarkerStore(Protocol):
    def get_marker(self, key: str) -> Optional[datetime]: ...

    def set_marker(self, key: str, timestamp: datetime) -> None: ...


@dataclass
class InMemoryMarkerStore:
    """Process-local marker store."""

    _markers: dict[str, datetime] = field(default_factory=dict)

    def get_marker(self, key: str) -> Optional[datetime]:
        return self._markers.get(key)

    def set_marker(self, key: str, timestamp: datetime) -> None:
        self._markers.setdefault(key, timestamp)

    def clear(self) -> None:
        self._markers.clear()


def marker_key(user_id: int, period_key: str, domain: str) -> str:
    return f"generated:{GenerationDomain.validate(domain)}:{user_id}:{period_key}"


@dataclass(frozen=True)
class IdempotencyGate:
    """Records that a generation batch already ran for a user's period.

    Markers only let callers skip repeated ledger scans. Two processes can
    both pass ``has_marker`` before either writes, so the ledger existence
    check stays the guard against duplicate occurrences.
    """

    store: MarkerStore

    def has_marker(self, user_id: int, period_key: str, domain: str) -> bool:
        return self.store.get_marker(marker_key(user_id, period_key, domain)) is not None

    def set_marker(
        self, user_id: int, period_key: str, domain: str, timestamp: datetime
    ) -> None:
        self.store.set_marker(marker_key(user_id, period_key, domain), timestamp)
