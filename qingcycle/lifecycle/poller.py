"""
State transition poller.

Polls a resource with describe calls on a fixed cadence until it reaches a
state from which the next mutating call is legal.
"""

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ..clients.base import RemoteClient
from ..logging_utils import LogManager, StateObserved
from ..models import Observation, ResourceHandle, StateClass
from .deadline import Deadline
from .errors import TransitionTimeoutError, UnexpectedDisappearanceError
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..drivers.base import ResourceDriver

DEFAULT_TRANSITION_TIMEOUT = 600.0


class StateTransitionPoller:
    """Waits out transitional states of one resource kind."""

    def __init__(
        self,
        client: RemoteClient,
        driver: "ResourceDriver",
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = DEFAULT_TRANSITION_TIMEOUT,
        poll_interval: Optional[float] = None,
        log_manager: Optional[LogManager] = None,
        correlation_id: Optional[str] = None,
    ):
        self.client = client
        self.driver = driver
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.poll_interval = (
            poll_interval if poll_interval is not None else driver.poll_interval
        )
        self.log_manager = log_manager
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.logger = logging.getLogger(self.__class__.__name__)

    async def describe(
        self, handle: ResourceHandle, deadline: Optional[Deadline] = None
    ) -> Observation:
        """Issue one describe call and map the response."""
        return self.driver.interpret(await self._describe_raw(handle, deadline))

    async def _describe_raw(
        self, handle: ResourceHandle, deadline: Optional[Deadline]
    ) -> Dict[str, Any]:
        request = self.driver.describe_request(handle.resource_id or "")
        return await self.retry_policy.run(
            lambda: self.client.call(request),
            idempotent=True,
            deadline=deadline,
            description=f"{request.action} {handle}",
        )

    async def await_condition(
        self,
        handle: ResourceHandle,
        ready: Callable[[Dict[str, Any]], bool],
        what: str,
        deadline: Optional[Deadline] = None,
    ) -> None:
        """
        Poll describe on the same cadence until ``ready(response)`` holds.

        Raises:
            TransitionTimeoutError: ``ready`` still false after ``timeout``
        """
        deadline = deadline or Deadline()
        loop = asyncio.get_running_loop()
        started = loop.time()

        while True:
            response = await self._describe_raw(handle, deadline)
            if ready(response):
                return

            elapsed = loop.time() - started
            if elapsed >= self.timeout:
                raise TransitionTimeoutError(
                    self.timeout, handle=handle, phase=f"await {what}"
                )

            self.logger.debug(
                "Waiting before mutating call",
                extra={"handle": str(handle), "phase": what},
            )
            await deadline.sleep(min(self.poll_interval, self.timeout - elapsed), what)

    async def await_stable_state(
        self,
        handle: ResourceHandle,
        expect_gone: bool = False,
        allow_gone: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> Observation:
        """
        Poll until the resource is stable.

        Args:
            handle: Resource to poll
            expect_gone: Wait for the resource to disappear instead (delete)
            allow_gone: Return a gone observation instead of raising
            deadline: Overall caller deadline

        Returns:
            The last observation

        Raises:
            TransitionTimeoutError: still transitional after ``timeout``
            UnexpectedDisappearanceError: resource vanished unexpectedly
        """
        deadline = deadline or Deadline()
        loop = asyncio.get_running_loop()
        started = loop.time()

        while True:
            observation = await self.describe(handle, deadline)
            state_class = self.driver.classify(observation.state)
            await self._observed(handle, observation, state_class)

            if state_class is StateClass.GONE:
                if expect_gone or allow_gone:
                    return observation
                self.logger.error(
                    "Resource disappeared while awaiting a stable state",
                    extra={
                        "handle": str(handle),
                        "phase": "await_stable_state",
                        "last_state": str(observation.state),
                    },
                )
                raise UnexpectedDisappearanceError(
                    "resource disappeared while awaiting a stable state",
                    handle=handle,
                    phase="await_stable_state",
                    last_state=observation.state,
                )

            if state_class is StateClass.STABLE and not expect_gone:
                return observation

            elapsed = loop.time() - started
            if elapsed >= self.timeout:
                raise TransitionTimeoutError(
                    self.timeout,
                    handle=handle,
                    phase="await_deletion" if expect_gone else "await_stable_state",
                    last_state=observation.state,
                )

            await deadline.sleep(
                min(self.poll_interval, self.timeout - elapsed),
                f"{handle} to leave {observation.state}",
            )

    async def _observed(
        self, handle: ResourceHandle, observation: Observation, state_class: StateClass
    ) -> None:
        self.logger.debug(
            "Observed remote state",
            extra={
                "handle": str(handle),
                "state": str(observation.state),
                "state_class": state_class.value,
            },
        )
        if self.log_manager is not None:
            await self.log_manager.emit_event(
                StateObserved(
                    correlation_id=self.correlation_id,
                    handle=str(handle),
                    state=str(observation.state),
                    state_class=state_class.value,
                )
            )
