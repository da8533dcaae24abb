from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    PLUS = "plus"
    BUSINESS = "business"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class ErrorCode(str, Enum):
    OFFLINE = "offline"
    TIMEOUT = "timeout"
    NETWORK = "network"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class PassReason(str, Enum):
    AUTO = "auto"
    RETRY = "retry"
    REFRESH = "refresh"


class PlanIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Tier
    billing_period: BillingPeriod
    seat_count: int = Field(ge=1)


class Pricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: float
    discount: float
    total: float
    currency: str = "USD"


class CartSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    intent: PlanIntent
    pricing: Pricing
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class CartSessionError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: ErrorCode
    message: str | None = None


class OrchestratorState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: SessionStatus = SessionStatus.IDLE
    session: CartSession | None = None
    error: CartSessionError | None = None
    is_offline: bool = False
    is_expired: bool = False
    last_updated: datetime | None = None
    attempt_count: int = 0
