"""
Remote operation client interface.

This module defines the narrow contract the lifecycle layer uses to reach
the cloud control plane: a single ``call`` taking an immutable request value
object, plus the error types a call may raise and the classifier that tells
transient rejections apart from permanent failures.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .requests import RemoteRequest

# QingCloud answers "server busy" with this ret_code; the call was rejected
# and had no remote effect.
SERVER_BUSY_CODE = 5100

BUSY_HTTP_STATUSES = frozenset({429, 503})


class ClientConfig(BaseModel):
    """Connection settings for a remote client."""

    access_key_id: str = ""
    secret_access_key: str = ""
    zone: str = "pek3"
    endpoint: str = "https://api.qingcloud.com/iaas/"
    timeout: float = 60.0
    api_version: int = 1
    extra_headers: Dict[str, str] = Field(default_factory=dict)


class RemoteClient(ABC):
    """
    Base interface for issuing named remote operations.

    Implementations translate a request value object into a wire call and
    return the decoded response body. Failures are raised as
    ``RemoteCallError`` subclasses so the retry policy can classify them.
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def call(self, request: "RemoteRequest") -> Dict[str, Any]:
        """Issue ``request`` and return the decoded response."""

    async def close(self) -> None:
        """Release any held connections."""

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class RemoteCallError(Exception):
    """A remote call was answered with an error."""

    def __init__(
        self,
        action: str,
        message: str,
        ret_code: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        self.action = action
        self.message = message
        self.ret_code = ret_code
        self.status_code = status_code
        code = f" (ret_code={ret_code})" if ret_code is not None else ""
        super().__init__(f"{action} failed{code}: {message}")


class ServerBusyError(RemoteCallError):
    """The backend rejected the call because it is temporarily busy."""


class RemoteTransportError(RemoteCallError):
    """The call did not get a definite answer (timeout, dropped connection)."""


def is_transient_busy(error: BaseException, idempotent: bool = True) -> bool:
    """
    Tell whether ``error`` is safe to retry.

    A busy rejection never reached the resource, so it is retryable for any
    call. A transport failure leaves the outcome unknown and is retryable
    only for calls that are safe to repeat.
    """
    if isinstance(error, ServerBusyError):
        return True
    if isinstance(error, RemoteTransportError):
        return idempotent
    if isinstance(error, RemoteCallError):
        return error.ret_code == SERVER_BUSY_CODE or (
            error.status_code in BUSY_HTTP_STATUSES
        )
    return False
