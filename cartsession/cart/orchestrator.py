from __future__ import annotations

import asyncio
from typing import Any, Callable

from cartsession.cart.errors import (
    CartSessionFailure,
    OfflineError,
    SessionExpiredError,
    classify_failure,
    is_retryable,
)
from cartsession.cart.models import (
    CartSession,
    ErrorCode,
    OrchestratorState,
    PassReason,
    PlanIntent,
    SessionStatus,
)
from cartsession.cart.store import CartSessionStore
from cartsession.config import CartConfig, RetryPolicy, get_cart_config, get_retry_policy
from cartsession.logging.audit import audit_event
from cartsession.logging.logger import get_logger
from cartsession.network.cancellation import CancellationToken
from cartsession.network.retry import Sleep, retry_with_backoff
from cartsession.runtime.environment import (
    AsyncioScheduler,
    Clock,
    Connectivity,
    ManualConnectivity,
    Scheduler,
    SystemClock,
    TimerHandle,
)

StateListener = Callable[[OrchestratorState], None]

logger = get_logger("orchestrator")


class CartSessionOrchestrator:
    """Keeps one server-confirmed cart session in line with the caller's plan intent.

    Intent changes are debounced, passes run through ``retry_with_backoff`` against
    the store, and only the newest pass may write state. Connectivity changes and
    session expiry trigger passes on their own. Commands never raise; failures land
    in ``state.error``.
    """

    def __init__(
        self,
        store: CartSessionStore,
        intent: PlanIntent,
        *,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        connectivity: Connectivity | None = None,
        config: CartConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep | None = None,
        monotonic: Callable[[], float] | None = None,
    ):
        self._store = store
        self._intent = intent
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or AsyncioScheduler()
        self._connectivity = connectivity or ManualConnectivity()
        self._config = config or get_cart_config()
        self._retry_policy = retry_policy or get_retry_policy()
        # Backoff and deadline timing; the running loop when unset.
        self._sleep = sleep
        self._monotonic = monotonic

        self._state = OrchestratorState()
        self._listeners: list[StateListener] = []
        self._request_id = 0
        self._cancel_token: CancellationToken | None = None
        self._debounce_handle: TimerHandle | None = None
        self._expiry_handle: TimerHandle | None = None
        self._unsubscribe_connectivity: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._started = False
        self._disposed = False

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def intent(self) -> PlanIntent:
        return self._intent

    @property
    def store(self) -> CartSessionStore:
        return self._store

    @property
    def request_id(self) -> int:
        return self._request_id

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # lifecycle

    def start(self) -> None:
        if self._started or self._disposed:
            return
        self._started = True
        session = self._store.get_active()
        self._set_state(
            status=SessionStatus.SUCCESS if session else SessionStatus.IDLE,
            session=session,
            last_updated=self._clock.now() if session else None,
            is_offline=not self._connectivity.is_online(),
            is_expired=False,
        )
        self._unsubscribe_connectivity = self._connectivity.subscribe(self._on_connectivity_change)
        self._arm_expiry(session)
        self._schedule_debounce()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cancel_debounce()
        self._cancel_expiry()
        if self._cancel_token is not None:
            self._cancel_token.cancel()
            self._cancel_token = None
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        self._listeners.clear()
        audit_event("cart.orchestrator.disposed", request_id=self._request_id)

    async def drain(self) -> None:
        """Wait until every pass started so far has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # commands

    def update_intent(self, intent: PlanIntent) -> None:
        if self._disposed or intent == self._intent:
            return
        self._intent = intent
        self._schedule_debounce()

    def retry(self) -> asyncio.Task[None] | None:
        return self._launch(PassReason.RETRY)

    def refresh(self) -> asyncio.Task[None] | None:
        return self._launch(PassReason.REFRESH)

    def clear(self) -> None:
        if self._disposed:
            return
        # Invalidate whatever is in flight so it cannot resurrect the session.
        self._request_id += 1
        if self._cancel_token is not None:
            self._cancel_token.cancel()
            self._cancel_token = None
        self._cancel_debounce()
        self._cancel_expiry()
        self._store.clear()
        self._set_state(
            status=SessionStatus.IDLE,
            session=None,
            error=None,
            last_updated=None,
            attempt_count=0,
            is_expired=False,
        )

    # passes

    def _launch(self, reason: PassReason) -> asyncio.Task[None] | None:
        if self._disposed:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("no running event loop; %s pass not started", reason.value)
            return None
        plan = self._begin_pass(reason)
        if plan is None:
            return None
        task = loop.create_task(self._execute_pass(*plan))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _begin_pass(self, reason: PassReason) -> tuple[int, CancellationToken, PassReason, PlanIntent] | None:
        self._request_id += 1
        request_id = self._request_id
        if self._cancel_token is not None:
            self._cancel_token.cancel()
            self._cancel_token = None

        if not self._connectivity.is_online():
            self._set_state(
                status=SessionStatus.ERROR,
                error=OfflineError().to_record(),
                is_offline=True,
                attempt_count=0,
            )
            audit_event("cart.pass.failed", request_id=request_id, reason=reason.value, code=ErrorCode.OFFLINE.value)
            return None

        token = CancellationToken()
        self._cancel_token = token
        self._set_state(status=SessionStatus.LOADING, error=None, attempt_count=0)
        audit_event("cart.pass.started", request_id=request_id, reason=reason.value)

        intent = self._intent
        if reason is PassReason.REFRESH:
            self._store.clear()
        elif reason is PassReason.AUTO and not self._state.is_expired:
            active = self._store.get_active()
            if active is not None and active.intent == intent:
                self._cancel_token = None
                self._apply_success(active)
                audit_event("cart.pass.short_circuit", request_id=request_id, session_id=active.id)
                return None
        return request_id, token, reason, intent

    async def _execute_pass(
        self,
        request_id: int,
        token: CancellationToken,
        reason: PassReason,
        intent: PlanIntent,
    ) -> None:
        def on_retry(attempt: int, error: BaseException) -> None:
            if not self._is_current(request_id):
                return
            self._set_state(attempt_count=self._state.attempt_count + 1)
            audit_event("cart.retry.scheduled", request_id=request_id, attempt=attempt, error=str(error))

        async def operation() -> CartSession:
            if self._store.discard_expired() is not None:
                raise SessionExpiredError()
            return await self._store.create_or_update(intent)

        try:
            session = await retry_with_backoff(
                operation,
                self._retry_policy,
                cancel_token=token,
                should_retry=is_retryable,
                on_retry=on_retry,
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
        except Exception as exc:  # noqa: BLE001
            if not self._is_current(request_id):
                audit_event("cart.pass.superseded", request_id=request_id, reason=reason.value)
                return
            failure = classify_failure(exc)
            if failure is not None:
                self._apply_failure(request_id, reason, failure)
            return
        finally:
            if self._cancel_token is token:
                self._cancel_token = None

        if not self._is_current(request_id):
            audit_event("cart.pass.superseded", request_id=request_id, reason=reason.value)
            return
        self._apply_success(session)
        audit_event(
            "cart.pass.succeeded",
            request_id=request_id,
            reason=reason.value,
            session_id=session.id,
            attempts=self._state.attempt_count + 1,
        )

    def _is_current(self, request_id: int) -> bool:
        return not self._disposed and request_id == self._request_id

    def _apply_success(self, session: CartSession) -> None:
        self._set_state(
            status=SessionStatus.SUCCESS,
            session=session,
            error=None,
            last_updated=self._clock.now(),
            is_expired=False,
        )
        self._arm_expiry(session)

    def _apply_failure(self, request_id: int, reason: PassReason, failure: CartSessionFailure) -> None:
        audit_event(
            "cart.pass.failed",
            request_id=request_id,
            reason=reason.value,
            code=failure.code.value,
            message=failure.message,
        )
        if failure.code != ErrorCode.EXPIRED:
            self._set_state(status=SessionStatus.ERROR, error=failure.to_record())
            return
        self._store.clear()
        self._cancel_expiry()
        self._set_state(
            status=SessionStatus.ERROR,
            error=failure.to_record(),
            session=None,
            is_expired=False,
        )
        if self._config.auto_create:
            # The stale record is gone, so this pass creates a fresh session.
            self._launch(PassReason.RETRY)

    # timers and signals

    def _schedule_debounce(self) -> None:
        self._cancel_debounce()
        if not self._started or self._disposed or not self._config.auto_create:
            return
        self._debounce_handle = self._scheduler.call_later(self._config.debounce_ms / 1000, self._on_debounce)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        self._launch(PassReason.AUTO)

    def _arm_expiry(self, session: CartSession | None) -> None:
        self._cancel_expiry()
        if session is None or self._disposed:
            return
        delay = (session.expires_at - self._clock.now()).total_seconds()
        if delay <= 0:
            self._on_expired(session.id)
            return
        self._expiry_handle = self._scheduler.call_later(delay, lambda: self._on_expired(session.id))

    def _cancel_expiry(self) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None

    def _on_expired(self, session_id: str) -> None:
        self._expiry_handle = None
        if self._disposed or self._state.is_expired:
            return
        current = self._state.session
        if current is None or current.id != session_id:
            return
        self._set_state(is_expired=True)
        audit_event("cart.session.expired", session_id=session_id)
        self._schedule_debounce()

    def _on_connectivity_change(self, online: bool) -> None:
        if self._disposed:
            return
        self._set_state(is_offline=not online)
        audit_event("cart.connectivity.changed", online=online)
        error = self._state.error
        if not online or error is None or error.code != ErrorCode.OFFLINE:
            return
        if self._config.auto_create and self._launch(PassReason.RETRY) is not None:
            return
        # Nothing reconciles on its own; drop the stale offline error.
        self._set_state(
            status=SessionStatus.SUCCESS if self._state.session is not None else SessionStatus.IDLE,
            error=None,
        )

    def _set_state(self, **changes: Any) -> None:
        if self._disposed:
            return
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            listener(self._state)
