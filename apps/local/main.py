from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from pydantic import BaseModel

from cartsession.cart.models import BillingPeriod, OrchestratorState, PlanIntent, Tier
from cartsession.cart.orchestrator import CartSessionOrchestrator
from cartsession.cart.store import CartSessionStore
from cartsession.config import RetryPolicy, ensure_directories
from cartsession.logging.audit import audit_event
from cartsession.logging.logger import get_logger
from cartsession.runtime.environment import Clock, ManualConnectivity

DEFAULT_INTENT = PlanIntent(tier=Tier.PLUS, billing_period=BillingPeriod.MONTHLY, seat_count=2)


class ConnectivityRequest(BaseModel):
    online: bool


class HealthResponse(BaseModel):
    status: str
    online: bool


def _orchestrator(request: Request) -> CartSessionOrchestrator:
    return request.app.state.orchestrator


def create_app(
    store: CartSessionStore | None = None,
    connectivity: ManualConnectivity | None = None,
    retry_policy: RetryPolicy | None = None,
    initial_intent: PlanIntent = DEFAULT_INTENT,
    clock: Clock | None = None,
) -> FastAPI:
    ensure_directories()
    get_logger()
    connectivity = connectivity or ManualConnectivity()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        orchestrator = CartSessionOrchestrator(
            store or CartSessionStore.from_config(clock=clock),
            initial_intent,
            clock=clock,
            connectivity=connectivity,
            retry_policy=retry_policy,
        )
        orchestrator.start()
        app.state.orchestrator = orchestrator
        try:
            yield
        finally:
            orchestrator.dispose()
            await orchestrator.drain()

    app = FastAPI(title="Cart Session Local", lifespan=lifespan)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", online=connectivity.is_online())

    @app.get("/cart/session", response_model=OrchestratorState)
    async def cart_session(orchestrator: CartSessionOrchestrator = Depends(_orchestrator)) -> OrchestratorState:
        return orchestrator.state

    @app.put("/cart/intent", response_model=OrchestratorState)
    async def cart_intent(
        payload: PlanIntent, orchestrator: CartSessionOrchestrator = Depends(_orchestrator)
    ) -> OrchestratorState:
        audit_event(
            "cart.intent.received",
            tier=payload.tier.value,
            billing_period=payload.billing_period.value,
            seat_count=payload.seat_count,
        )
        orchestrator.update_intent(payload)
        return orchestrator.state

    @app.post("/cart/retry", response_model=OrchestratorState)
    async def cart_retry(orchestrator: CartSessionOrchestrator = Depends(_orchestrator)) -> OrchestratorState:
        # An expired session triggers a follow-up pass; wait for every pass to settle.
        orchestrator.retry()
        await orchestrator.drain()
        return orchestrator.state

    @app.post("/cart/refresh", response_model=OrchestratorState)
    async def cart_refresh(orchestrator: CartSessionOrchestrator = Depends(_orchestrator)) -> OrchestratorState:
        orchestrator.refresh()
        await orchestrator.drain()
        return orchestrator.state

    @app.post("/cart/clear", response_model=OrchestratorState)
    async def cart_clear(orchestrator: CartSessionOrchestrator = Depends(_orchestrator)) -> OrchestratorState:
        orchestrator.clear()
        return orchestrator.state

    @app.post("/cart/connectivity", response_model=OrchestratorState)
    async def cart_connectivity(
        payload: ConnectivityRequest, orchestrator: CartSessionOrchestrator = Depends(_orchestrator)
    ) -> OrchestratorState:
        connectivity.set_online(payload.online)
        await orchestrator.drain()
        return orchestrator.state

    return app


app = create_app()
