"""
QingCloud API client.

Issues signed GET requests against the QingCloud IaaS endpoint using
``httpx``. Every action shares the same envelope: common parameters
(zone, timestamp, access key, signature) plus the flattened request
parameters. Responses carry a ``ret_code``; non-zero codes are raised as
``RemoteCallError`` and the busy code as ``ServerBusyError``.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import httpx

from .base import (
    BUSY_HTTP_STATUSES,
    SERVER_BUSY_CODE,
    ClientConfig,
    RemoteCallError,
    RemoteClient,
    RemoteTransportError,
    ServerBusyError,
)
from .requests import RemoteRequest

SIGNATURE_METHOD = "HmacSHA256"
SIGNATURE_VERSION = 1


def _encode(value: Any) -> str:
    return quote(str(value), safe="-_.~")


def canonical_query(params: Dict[str, Any]) -> str:
    """Sorted, percent-encoded query string used both for signing and sending."""
    return "&".join(
        f"{_encode(key)}={_encode(params[key])}" for key in sorted(params)
    )


def sign(secret_access_key: str, method: str, path: str, params: Dict[str, Any]) -> str:
    """Compute the request signature for ``params``."""
    string_to_sign = f"{method}\n{path}\n{canonical_query(params)}"
    digest = hmac.new(
        secret_access_key.encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8").strip()


class QingCloudClient(RemoteClient):
    """
    Remote client for the QingCloud IaaS API.

    The underlying ``httpx.AsyncClient`` is created on first use and shared
    across calls; close it with ``close()`` or by using the client as an
    async context manager.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._path = urlparse(self.config.endpoint).path or "/"

    @classmethod
    def from_settings(cls, settings, transport=None) -> "QingCloudClient":
        """Build a client from ``QingCloudSettings``."""
        config = ClientConfig(
            access_key_id=settings.qy_access_key_id or "",
            secret_access_key=settings.qy_secret_access_key or "",
            zone=settings.qy_zone,
            endpoint=settings.qy_endpoint,
            timeout=settings.qy_request_timeout,
        )
        return cls(config, transport=transport)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.config.timeout,
                transport=self._transport,
                headers=self.config.extra_headers,
            )
        return self._http

    def build_params(
        self, request: RemoteRequest, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Return the full signed parameter set for ``request``."""
        now = now or datetime.now(timezone.utc)
        params = request.to_params()
        params.setdefault("zone", self.config.zone)
        params.update(
            {
                "access_key_id": self.config.access_key_id,
                "signature_method": SIGNATURE_METHOD,
                "signature_version": SIGNATURE_VERSION,
                "time_stamp": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "version": self.config.api_version,
            }
        )
        params["signature"] = sign(
            self.config.secret_access_key, "GET", self._path, params
        )
        return params

    async def call(self, request: RemoteRequest) -> Dict[str, Any]:
        """Send ``request`` and return the decoded response body."""
        params = self.build_params(request)
        url = f"{self.config.endpoint}?{canonical_query(params)}"

        self.logger.debug(
            "Issuing remote call",
            extra={"action": request.action, "zone": params["zone"]},
        )

        try:
            resp = await self._client().get(url)
        except httpx.TransportError as e:
            raise RemoteTransportError(request.action, str(e)) from e

        if resp.status_code in BUSY_HTTP_STATUSES:
            raise ServerBusyError(
                request.action,
                f"HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise RemoteCallError(
                request.action,
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteCallError(request.action, f"Invalid JSON response: {e}") from e

        ret_code = body.get("ret_code", 0)
        if ret_code == SERVER_BUSY_CODE:
            raise ServerBusyError(
                request.action, body.get("message", "server busy"), ret_code=ret_code
            )
        if ret_code != 0:
            raise RemoteCallError(
                request.action, body.get("message", "unknown error"), ret_code=ret_code
            )
        return body  # type: ignore[no-any-return]

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
