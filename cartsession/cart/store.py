from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import uuid4

from pydantic import ValidationError

from cartsession.cart.backends.base import SessionBackend
from cartsession.cart.backends.memory import MemorySessionBackend
from cartsession.cart.errors import SessionNotFoundError
from cartsession.cart.models import CartSession, PlanIntent
from cartsession.cart.pricing import PricingTable
from cartsession.config import CartConfig, get_cart_config
from cartsession.logging.audit import audit_event
from cartsession.logging.logger import get_logger
from cartsession.runtime.environment import Clock, SystemClock

SESSION_KEY = "cart_session"

logger = get_logger("store")


def _new_session_id() -> str:
    return f"cart_{uuid4().hex}"


class CartSessionStore:
    """Single-slot register holding at most one cart session."""

    def __init__(
        self,
        backend: SessionBackend,
        pricing: PricingTable,
        clock: Clock | None = None,
        session_ttl: timedelta = timedelta(hours=24),
        latency: float = 0.0,
    ):
        if session_ttl <= timedelta(0):
            raise ValueError("session_ttl must be positive")
        self._backend = backend
        self._pricing = pricing
        self._clock = clock or SystemClock()
        self._session_ttl = session_ttl
        self._latency = latency

    @classmethod
    def from_config(
        cls,
        config: CartConfig | None = None,
        pricing: PricingTable | None = None,
        clock: Clock | None = None,
    ) -> "CartSessionStore":
        config = config or get_cart_config()
        return cls(
            backend=_get_backend(config),
            pricing=pricing or PricingTable.from_config(),
            clock=clock,
            session_ttl=timedelta(seconds=config.session_ttl_seconds),
            latency=config.store_latency_ms / 1000,
        )

    @property
    def backend(self) -> SessionBackend:
        return self._backend

    @property
    def pricing(self) -> PricingTable:
        return self._pricing

    def _read(self) -> CartSession | None:
        raw = self._backend.get(SESSION_KEY)
        if raw is None:
            return None
        try:
            return CartSession.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("ignoring corrupt cart session record: %s", exc.errors()[:1])
            return None

    def _write(self, session: CartSession) -> None:
        self._backend.set(SESSION_KEY, session.model_dump_json())

    def peek(self) -> CartSession | None:
        return self._read()

    def get_active(self) -> CartSession | None:
        session = self._read()
        if session is None or session.is_expired(self._clock.now()):
            return None
        return session

    def get(self, session_id: str) -> CartSession | None:
        session = self.get_active()
        if session is None or session.id != session_id:
            return None
        return session

    def validate(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def discard_expired(self) -> CartSession | None:
        """Remove the stored record if it has expired and return it."""
        session = self._read()
        if session is None or not session.is_expired(self._clock.now()):
            return None
        self._backend.remove(SESSION_KEY)
        audit_event("cart.session.expired", session_id=session.id, expires_at=session.expires_at.isoformat())
        return session

    def create(self, intent: PlanIntent) -> CartSession:
        pricing = self._pricing.price(intent)
        now = self._clock.now()
        session = CartSession(
            id=_new_session_id(),
            intent=intent,
            pricing=pricing,
            created_at=now,
            expires_at=now + self._session_ttl,
        )
        self._write(session)
        audit_event(
            "cart.session.created",
            session_id=session.id,
            tier=intent.tier.value,
            billing_period=intent.billing_period.value,
            seat_count=intent.seat_count,
            total=pricing.total,
        )
        return session

    def update(self, session_id: str, intent: PlanIntent) -> CartSession:
        existing = self.get(session_id)
        if existing is None:
            raise SessionNotFoundError()
        pricing = self._pricing.price(intent)
        updated = existing.model_copy(update={"intent": intent, "pricing": pricing})
        self._write(updated)
        audit_event(
            "cart.session.updated",
            session_id=updated.id,
            tier=intent.tier.value,
            billing_period=intent.billing_period.value,
            seat_count=intent.seat_count,
            total=pricing.total,
        )
        return updated

    async def create_or_update(self, intent: PlanIntent) -> CartSession:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        active = self.get_active()
        if active is None:
            return self.create(intent)
        if active.intent == intent:
            return active
        return self.update(active.id, intent)

    def clear(self) -> None:
        self._backend.remove(SESSION_KEY)
        audit_event("cart.session.cleared")


def _get_backend(config: CartConfig) -> SessionBackend:
    if config.store_backend == "file":
        from cartsession.cart.backends.file import JsonFileSessionBackend

        return JsonFileSessionBackend()
    return MemorySessionBackend()
