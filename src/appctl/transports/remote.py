"""Remote-service transport: an out-of-process privileged helper.

The helper listens on a local message channel (a unix socket or loopback
HTTP) and exposes:
- GET  /ping                 liveness of the channel
- GET  /permission           {"granted": bool} for this caller
- POST /permission/request   asks the helper to prompt for the grant
- POST /exec                 {"command": str} -> {"exit_code": int, "output": str}
"""

from __future__ import annotations

from typing import Any

import httpx

from ..errors import (
    AppControlError,
    CommandTimeout,
    ExecutionFailed,
    TransportDenied,
    TransportUnavailable,
)
from ..policy import CommandPolicy
from ..types import ExecutionMode
from .base import DEFAULT_TIMEOUT_S, Transport

ERROR_PREFIX = "ERROR:"


class RemoteServiceTransport(Transport):
    """
    Transport backed by the privileged helper service.

    Availability needs two independent conditions: the channel is live and
    the permission is granted. Failures keep them apart because the fix
    differs (restart the helper vs. re-request the permission).
    """

    mode = ExecutionMode.REMOTE

    def __init__(
        self,
        base_url: str = "http://appctl-helper",
        *,
        socket_path: str | None = None,
        headers: dict[str, str] | None = None,
        connect_timeout_s: float = 3.0,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        policy: CommandPolicy | None = None,
        client: httpx.Client | None = None,
    ):
        super().__init__(timeout_s=timeout_s, policy=policy)
        self.connect_timeout_s = connect_timeout_s
        if client is None:
            transport = httpx.HTTPTransport(uds=socket_path) if socket_path else None
            client = httpx.Client(
                base_url=base_url,
                headers=headers or {},
                transport=transport,
                timeout=httpx.Timeout(self.timeout_s, connect=connect_timeout_s),
            )
        self._client = client

    def _probe_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.connect_timeout_s)

    def _get_json(self, path: str, *, method: str = "GET") -> dict[str, Any] | None:
        try:
            res = self._client.request(method, path, timeout=self._probe_timeout())
        except httpx.HTTPError:
            return None
        if res.status_code != 200:
            return None
        try:
            data = res.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def ping(self) -> bool:
        """Is the channel live?"""
        try:
            res = self._client.get("/ping", timeout=self._probe_timeout())
        except httpx.HTTPError:
            return False
        return res.status_code == 200

    def permission_granted(self) -> bool:
        data = self._get_json("/permission")
        return bool(data and data.get("granted") is True)

    def is_granted(self) -> bool:
        return self.ping() and self.permission_granted()

    def request_access(self) -> bool:
        if not self.ping():
            return False
        if self.permission_granted():
            return True
        data = self._get_json("/permission/request", method="POST")
        return bool(data and data.get("granted") is True)

    def availability_error(self) -> AppControlError | None:
        if not self.ping():
            return TransportUnavailable("Remote service is not running (channel unreachable)")
        if not self.permission_granted():
            return TransportDenied("Remote service permission was not granted or was revoked")
        return None

    def _run(self, command: str, timeout_s: float) -> str:
        try:
            res = self._client.post(
                "/exec",
                json={"command": command},
                timeout=httpx.Timeout(timeout_s, connect=self.connect_timeout_s),
            )
        except httpx.ConnectTimeout as e:
            raise TransportUnavailable(f"Remote service unreachable: {e}") from e
        except httpx.TimeoutException as e:
            raise CommandTimeout(f"Command timed out after {timeout_s:g}s: {command}") from e
        except httpx.TransportError as e:
            raise TransportUnavailable(f"Remote service unreachable: {e}") from e

        if res.status_code in (401, 403):
            raise TransportDenied("Remote service permission was not granted or was revoked")
        if res.status_code != 200:
            raise ExecutionFailed(f"Remote service returned HTTP {res.status_code}")

        try:
            data = res.json()
        except ValueError as e:
            raise ExecutionFailed("Malformed response from remote service") from e
        if not isinstance(data, dict):
            raise ExecutionFailed("Malformed response from remote service")

        output = str(data.get("output") or "")
        try:
            exit_code = int(data.get("exit_code", 0))
        except (TypeError, ValueError):
            exit_code = 1
        if output.startswith(ERROR_PREFIX):
            raise ExecutionFailed(output[len(ERROR_PREFIX):].strip() or "Command failed", exit_code)
        if exit_code != 0:
            raise ExecutionFailed(output.strip() or f"Exit code {exit_code}", exit_code=exit_code)
        return output

    def close(self) -> None:
        self._client.close()
