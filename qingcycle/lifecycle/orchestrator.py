"""
Resource lifecycle orchestrator.

Turns a create, update or delete request into an ordered sequence of remote
calls: every state-changing call is preceded by a wait for a stable state,
issued through the retry policy, and recorded once it has succeeded. An
interrupted update leaves the resource in the state its last completed step
produced and reports exactly which steps were applied.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional, Union

from ..clients.base import RemoteClient
from ..clients.requests import RemoteRequest
from ..logging_utils import (
    LogManager,
    LogEvent,
    OperationCompleted,
    OperationStarted,
    StepCompleted,
    StepStarted,
)
from ..models import AttributeSet, ResourceHandle, StateClass
from .deadline import Deadline
from .errors import PartialUpdateFailure, PreconditionError, UnexpectedDisappearanceError
from .plan import AppliedStepLedger, StepContext, UpdateStep, plan_fingerprint
from .poller import DEFAULT_TRANSITION_TIMEOUT, StateTransitionPoller
from .retry import RetryConfig, RetryPolicy

if TYPE_CHECKING:
    from ..config.settings import AppSettings
    from ..drivers.base import ResourceDriver

DeadlineLike = Union[Deadline, float, None]


class LifecycleOrchestrator:
    """
    Drives one resource kind through create, read, update and delete.

    The orchestrator is generic over a ``ResourceDriver``; the driver owns
    every kind-specific decision (which states are stable, which steps an
    update needs and which remote calls each step issues).
    """

    def __init__(
        self,
        client: RemoteClient,
        driver: "ResourceDriver",
        retry_policy: Optional[RetryPolicy] = None,
        poller: Optional[StateTransitionPoller] = None,
        log_manager: Optional[LogManager] = None,
        correlation_id: Optional[str] = None,
    ):
        self.client = client
        self.driver = driver
        self.retry_policy = retry_policy or RetryPolicy()
        self.log_manager = log_manager
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.poller = poller or StateTransitionPoller(
            client,
            driver,
            retry_policy=self.retry_policy,
            log_manager=log_manager,
            correlation_id=self.correlation_id,
        )
        self.logger = logging.getLogger(f"{self.__class__.__name__}:{driver.kind}")
        # Ledgers of failed updates, keyed by resource id, so that a
        # re-driven update with the same inputs skips what already succeeded.
        self._pending_ledgers: Dict[str, AppliedStepLedger] = {}

    # Public lifecycle operations

    async def create(
        self, desired: AttributeSet, deadline: DeadlineLike = None
    ) -> ResourceHandle:
        """
        Provision a resource and bring it to ``desired``.

        Provisioning failures are raised without a handle. Failures after
        the resource exists carry the handle so it can be retried or deleted.
        """
        deadline = Deadline.coerce(deadline)
        self.driver.check_create(desired)

        async with self._operation("create") as op:
            request = self.driver.provision_request(desired)
            response = await self._call(request, deadline)
            handle = self.driver.handle_from(response)
            op["handle"] = str(handle)

            self.logger.info(
                "Resource provisioned",
                extra={"handle": str(handle), "operation": "create"},
            )

            await self.poller.await_stable_state(handle, deadline=deadline)
            await self.update(
                handle,
                desired,
                self.driver.creation_baseline(desired),
                deadline=deadline,
            )
            return handle

    async def read(
        self, handle: ResourceHandle, deadline: DeadlineLike = None
    ) -> Optional[AttributeSet]:
        """Describe the resource; a gone resource clears the handle and returns None."""
        self._require_handle(handle, "read")
        observation = await self.poller.describe(handle, Deadline.coerce(deadline))
        if self.driver.classify(observation.state) is StateClass.GONE:
            self.logger.info(
                "Resource no longer exists",
                extra={"handle": str(handle), "last_state": str(observation.state)},
            )
            handle.clear()
            return None
        return observation.attributes

    async def update(
        self,
        handle: ResourceHandle,
        desired: AttributeSet,
        current: AttributeSet,
        deadline: DeadlineLike = None,
    ) -> Optional[AttributeSet]:
        """
        Reconcile the resource from ``current`` to ``desired``.

        Returns:
            The attributes confirmed by a final describe, or None when
            nothing needed to change (no remote call is made then)

        Raises:
            PreconditionError: a force-new field changed or the input is invalid
            PartialUpdateFailure: a step failed; carries the applied steps
        """
        self._require_handle(handle, "update")
        deadline = Deadline.coerce(deadline)
        self.driver.check_update(desired, current)

        plan = self.driver.build_update_plan(desired, current)
        if plan.is_empty:
            self.logger.debug(
                "Nothing to change", extra={"handle": str(handle), "operation": "update"}
            )
            return None

        ledger = self._ledger_for(handle, plan_fingerprint(desired, current))
        pending = [step for step in plan if not ledger.has_applied(step.name)]
        if len(pending) < len(plan):
            self.logger.info(
                "Resuming partially applied update",
                extra={
                    "handle": str(handle),
                    "operation": "update",
                    "applied_steps": ledger.applied,
                    "pending_steps": [step.name for step in pending],
                },
            )

        async with self._operation("update", handle):
            ctx = StepContext(
                handle=handle,
                desired=desired,
                current=current,
                call_remote=lambda request: self._call(request, deadline),
                await_remote=lambda: self.poller.await_stable_state(
                    handle, deadline=deadline
                ),
            )

            await self.driver.before_mutation(self.poller, handle, deadline)
            for step in pending:
                await self._run_step(step, ctx, ledger)

            self._pending_ledgers.pop(ledger.handle, None)

            final = await self.poller.describe(handle, deadline)
            if self.driver.classify(final.state) is StateClass.GONE:
                raise UnexpectedDisappearanceError(
                    "resource disappeared after update",
                    handle=handle,
                    phase="confirm",
                    last_state=final.state,
                )
            return final.attributes

    async def delete(self, handle: ResourceHandle, deadline: DeadlineLike = None) -> None:
        """Terminate the resource; deleting an absent resource succeeds."""
        if not handle.exists:
            return
        self._require_handle(handle, "delete")
        deadline = Deadline.coerce(deadline)

        async with self._operation("delete", handle):
            observation = await self.poller.await_stable_state(
                handle, allow_gone=True, deadline=deadline
            )
            if self.driver.classify(observation.state) is StateClass.GONE:
                self.logger.info(
                    "Resource already gone, nothing to delete",
                    extra={"handle": str(handle), "operation": "delete"},
                )
                self._forget(handle)
                return

            await self.driver.before_mutation(self.poller, handle, deadline)
            await self._call(self.driver.terminate_request(handle.resource_id), deadline)
            await self.poller.await_stable_state(
                handle, expect_gone=True, deadline=deadline
            )
            self.logger.info(
                "Resource deleted", extra={"handle": str(handle), "operation": "delete"}
            )
            self._forget(handle)

    # Internals

    async def _run_step(
        self, step: UpdateStep, ctx: StepContext, ledger: AppliedStepLedger
    ) -> None:
        started_at = datetime.utcnow()
        await self._emit(
            StepStarted(
                correlation_id=self.correlation_id,
                handle=str(ctx.handle),
                step_name=step.name,
                fields=list(step.fields),
            )
        )

        try:
            if step.requires_quiescence:
                await ctx.await_stable()
            await step.apply(ctx)
            if step.induces_transition:
                await ctx.await_stable()
        except asyncio.CancelledError:
            self._pending_ledgers[ledger.handle] = ledger
            raise
        except Exception as e:
            self._pending_ledgers[ledger.handle] = ledger
            duration = (datetime.utcnow() - started_at).total_seconds()
            last_state = getattr(e, "last_state", None) or (
                ctx.observation.state if ctx.observation else None
            )

            self.logger.error(
                "Update step failed",
                extra={
                    "handle": str(ctx.handle),
                    "operation": "update",
                    "step": step.name,
                    "applied_steps": ledger.applied,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "last_state": str(last_state) if last_state else None,
                    "duration_seconds": duration,
                },
            )
            await self._emit(
                StepCompleted(
                    correlation_id=self.correlation_id,
                    handle=str(ctx.handle),
                    step_name=step.name,
                    success=False,
                    duration_seconds=duration,
                    error_message=str(e),
                )
            )
            raise PartialUpdateFailure(
                step.name,
                ledger.applied,
                e,
                handle=ctx.handle,
                last_state=last_state,
            ) from e

        ledger.record(step.name, started_at)
        await self._emit(
            StepCompleted(
                correlation_id=self.correlation_id,
                handle=str(ctx.handle),
                step_name=step.name,
                success=True,
                duration_seconds=(datetime.utcnow() - started_at).total_seconds(),
            )
        )

    async def _call(self, request: RemoteRequest, deadline: Deadline) -> Dict[str, Any]:
        return await self.retry_policy.run(
            lambda: self.client.call(request),
            idempotent=request.idempotent,
            deadline=deadline,
            description=request.action,
        )

    def _ledger_for(self, handle: ResourceHandle, fingerprint: str) -> AppliedStepLedger:
        key = handle.resource_id or ""
        ledger = self._pending_ledgers.pop(key, None)
        if ledger is not None and ledger.fingerprint == fingerprint:
            return ledger
        return AppliedStepLedger(handle=key, fingerprint=fingerprint)

    def pending_ledger(self, handle: ResourceHandle) -> Optional[AppliedStepLedger]:
        """Ledger of the last failed update of ``handle``, if any."""
        return self._pending_ledgers.get(handle.resource_id or "")

    def _forget(self, handle: ResourceHandle) -> None:
        self._pending_ledgers.pop(handle.resource_id or "", None)
        handle.clear()

    def _require_handle(self, handle: ResourceHandle, operation: str) -> None:
        if not handle.exists:
            raise PreconditionError(
                "resource handle has no identifier", handle=handle, phase=operation
            )
        if handle.kind != self.driver.kind:
            raise PreconditionError(
                f"handle kind '{handle.kind}' does not match driver '{self.driver.kind}'",
                handle=handle,
                phase=operation,
            )

    @asynccontextmanager
    async def _operation(
        self, operation: str, handle: Optional[ResourceHandle] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """Emit start/completion events and log failures for one operation."""
        state: Dict[str, Any] = {"handle": str(handle) if handle else None}
        start_time = datetime.utcnow()
        await self._emit(
            OperationStarted(
                correlation_id=self.correlation_id,
                handle=state["handle"],
                operation=operation,
            )
        )
        try:
            yield state
        except BaseException as e:
            duration = (datetime.utcnow() - start_time).total_seconds()
            self.logger.error(
                "Lifecycle operation failed",
                extra={
                    "handle": state["handle"],
                    "operation": operation,
                    "phase": "error",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "duration_seconds": duration,
                },
            )
            await self._emit(
                OperationCompleted(
                    correlation_id=self.correlation_id,
                    handle=state["handle"],
                    operation=operation,
                    success=False,
                    duration_seconds=duration,
                    error_message=str(e),
                )
            )
            raise
        await self._emit(
            OperationCompleted(
                correlation_id=self.correlation_id,
                handle=state["handle"],
                operation=operation,
                success=True,
                duration_seconds=(datetime.utcnow() - start_time).total_seconds(),
            )
        )

    async def _emit(self, event: LogEvent) -> None:
        if self.log_manager is not None:
            await self.log_manager.emit_event(event)


def build_orchestrator(
    kind: str,
    client: RemoteClient,
    settings: Optional["AppSettings"] = None,
    log_manager: Optional[LogManager] = None,
    correlation_id: Optional[str] = None,
) -> LifecycleOrchestrator:
    """Wire a driver, retry policy and poller for ``kind`` from settings."""
    from ..config.settings import get_settings
    from ..drivers import get_driver

    settings = settings or get_settings()
    lifecycle = settings.lifecycle
    driver = get_driver(kind, poll_interval=lifecycle.poll_interval_for(kind))
    retry_policy = RetryPolicy(
        RetryConfig(
            max_attempts=lifecycle.retry_max_attempts,
            base_delay=lifecycle.retry_base_delay,
            backoff_factor=lifecycle.retry_backoff_factor,
            max_delay=lifecycle.retry_max_delay,
        )
    )
    correlation_id = correlation_id or str(uuid.uuid4())
    poller = StateTransitionPoller(
        client,
        driver,
        retry_policy=retry_policy,
        timeout=lifecycle.transition_timeout or DEFAULT_TRANSITION_TIMEOUT,
        log_manager=log_manager,
        correlation_id=correlation_id,
    )
    return LifecycleOrchestrator(
        client,
        driver,
        retry_policy=retry_policy,
        poller=poller,
        log_manager=log_manager,
        correlation_id=correlation_id,
    )
