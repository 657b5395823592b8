"""
Socket protocol client for the gateway (JSON text frames over WebSocket).

Frame format: ``{type: "req"|"res"|"event", id?, method?, params?, ok?, payload?, error?, event?}``.

A session authenticates before any application call is allowed:

1. The server may push ``{event: "connect.challenge"}``; the client answers with a
   single ``connect`` request carrying the token (and password, when set).
2. Authentication succeeds on whichever arrives first: the matching
   ``{type: "res", ok: true}``, an unsolicited ``connect.ready`` event, or any
   ``ok: true`` response seen before authentication. This is intentionally
   lenient so gateways that skip one of the signals still work; it is not a
   strict protocol validator.
3. ``ok: false`` on the connect request, or a close/error before
   authentication, is terminal.

After authentication, requests are correlated purely by ``id``. Every logical
call opens and tears down its own session; nothing is pooled.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException

from clawbridge.core.constants import (
    AGENTS_LIST_METHODS,
    CHANNELS_METHODS,
    CLIENT_DESCRIPTOR,
    CLIENT_LOCALE,
    CLIENT_ROLE,
    CLIENT_SCOPES,
    CLIENT_USER_AGENT,
    CONFIG_GET_METHODS,
    CONNECTIVITY_TEST_TIMEOUT_MS,
    PROTOCOL_VERSION,
    SOCKET_REQUEST_TIMEOUT,
    STATUS_METHODS,
)
from clawbridge.core.errors import (
    ORIGIN_NOT_ALLOWED_RE,
    AuthenticationFailure,
    GatewayError,
    OriginRejected,
    TransportUnavailable,
    classify_error_message,
    describe_error,
)
from clawbridge.core.extraction import (
    apply_config,
    apply_status,
    extract_dataset,
    normalize_agents,
    normalize_channels,
)
from clawbridge.core.fallback import FallbackChain
from clawbridge.core.types import (
    AuthState,
    ConnectionConfig,
    ConnectivityResult,
    Diagnostics,
    GatewayInfo,
)

_socket_log = logging.getLogger("clawbridge.socket")

# Opens a websocket: (url, open_timeout) -> connection with async send/recv/close.
Connector = Callable[[str, float], Awaitable[Any]]

WS_MAX_MESSAGE_SIZE = 8_000_000


async def default_connector(url: str, open_timeout: float) -> Any:
    return await websockets.connect(url, open_timeout=open_timeout, max_size=WS_MAX_MESSAGE_SIZE)


def _error_message(error: Any, fallback: str) -> str:
    if isinstance(error, dict):
        message = cast(dict[str, Any], error).get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(error, str) and error:
        return error
    return fallback


def _close_code(exc: ConnectionClosed) -> int:
    received = getattr(exc, "rcvd", None)
    return received.code if received is not None else 1006


def _handshake_status(exc: InvalidHandshake) -> int | None:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None) or getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


@dataclass
class PendingRequest:
    id: str
    method: str
    future: asyncio.Future[Any]


class GatewaySocketSession:
    """One authenticated socket connection; use as an async context manager.

    Args:
        config: Target and credentials.
        diagnostics: Trail that receives every protocol step.
        connector: Opens the websocket; defaults to ``websockets.connect``.
        request_timeout: Per-request timeout in seconds, independent of the
            connection timeout (``config.timeout_ms``).
    """

    def __init__(
        self,
        config: ConnectionConfig,
        diagnostics: Diagnostics | None = None,
        connector: Connector | None = None,
        request_timeout: float = SOCKET_REQUEST_TIMEOUT,
    ) -> None:
        self.config = config
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(logger=_socket_log)
        self.request_timeout = request_timeout
        self.state = AuthState.CONNECTING
        self._connector = connector or default_connector
        self._ws: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: dict[str, PendingRequest] = {}
        self._id_prefix = uuid.uuid4().hex[:8]
        self._ids = itertools.count(1)
        self._auth_request_id: str | None = None
        self._auth_future: asyncio.Future[None] | None = None
        self._closing = False

    async def __aenter__(self) -> GatewaySocketSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- connection lifecycle --------------------------------------------

    def _connect_url(self) -> str:
        base = self.config.ws_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}token={quote(self.config.bearer_token)}"

    def next_request_id(self) -> str:
        return f"{self._id_prefix}-{next(self._ids)}"

    async def open(self) -> None:
        timeout = self.config.timeout_seconds
        self.diagnostics.append(f"[WS] Connecting to {self.config.ws_url}")
        self.diagnostics.append(f"[WS] Token length: {len(self.config.bearer_token)}")
        self._auth_future = asyncio.get_running_loop().create_future()

        try:
            self._ws = await asyncio.wait_for(self._connector(self._connect_url(), timeout), timeout)
        except InvalidHandshake as e:
            self.state = AuthState.CLOSED_ERROR
            status = _handshake_status(e)
            if status in (401, 403):
                raise AuthenticationFailure(
                    f"Gateway rejected websocket upgrade (HTTP {status})", status=status
                ) from e
            raise TransportUnavailable(
                f"WebSocket connection failed to {self.config.ws_url}: {describe_error(e)}",
                status=status,
            ) from e
        except asyncio.TimeoutError:
            self.state = AuthState.CLOSED_ERROR
            raise TransportUnavailable(
                f"WebSocket connection timeout after {self.config.timeout_ms}ms"
            ) from None
        except (OSError, WebSocketException) as e:
            self.state = AuthState.CLOSED_ERROR
            raise TransportUnavailable(
                f"WebSocket connection failed to {self.config.ws_url}: {describe_error(e)}"
            ) from e
        except ValueError as e:
            self.state = AuthState.CLOSED_ERROR
            raise TransportUnavailable(
                f"Invalid gateway URL {self.config.ws_url}: {describe_error(e)}"
            ) from e

        self.diagnostics.append("[WS] socket open")
        self.state = AuthState.AWAITING
        self._reader = asyncio.create_task(self._read_loop())

        try:
            await asyncio.wait_for(self._auth_future, timeout)
        except asyncio.TimeoutError:
            await self.close(error=True)
            raise TransportUnavailable(
                f"WebSocket connection timeout after {self.config.timeout_ms}ms"
            ) from None
        except GatewayError:
            await self.close(error=True)
            raise

    async def close(self, error: bool = False) -> None:
        if self._closing:
            return
        self._closing = True

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        self._fail_pending(TransportUnavailable("WebSocket session closed"))

        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                _socket_log.debug("Ignoring error while closing websocket: %s", e)

        if not self.state.is_closed:
            self.state = AuthState.CLOSED_ERROR if error else AuthState.CLOSED_OK

    # --- state machine ---------------------------------------------------

    def _mark_authenticated(self, reason: str) -> bool:
        """Single guarded transition into AUTHENTICATED; later signals are no-ops."""
        if self.state is not AuthState.AWAITING:
            return False
        self.state = AuthState.AUTHENTICATED
        self.diagnostics.append(reason)
        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_result(None)
        return True

    def _fail_auth(self, error: GatewayError) -> None:
        self.state = AuthState.CLOSED_ERROR
        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(error)

    def _fail_pending(self, error: GatewayError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error)

    async def _send_connect(self) -> None:
        if self._auth_request_id is not None:
            self.diagnostics.append("[WS] ignoring repeated connect.challenge")
            return
        self._auth_request_id = self.next_request_id()

        auth: dict[str, str] = {"token": self.config.bearer_token}
        if self.config.password:
            auth["password"] = self.config.password
        frame = {
            "type": "req",
            "id": self._auth_request_id,
            "method": "connect",
            "params": {
                "minProtocol": PROTOCOL_VERSION,
                "maxProtocol": PROTOCOL_VERSION,
                "client": dict(CLIENT_DESCRIPTOR),
                "role": CLIENT_ROLE,
                "scopes": list(CLIENT_SCOPES),
                "caps": [],
                "commands": [],
                "permissions": {},
                "auth": auth,
                "locale": CLIENT_LOCALE,
                "userAgent": CLIENT_USER_AGENT,
            },
        }
        await cast(Any, self._ws).send(json.dumps(frame))
        self.diagnostics.append("[WS] sent connect request")

    async def _read_loop(self) -> None:
        assert self._ws is not None
        try:
            while True:
                raw = await self._ws.recv()
                await self._handle_frame(raw)
        except ConnectionClosed as e:
            self._on_closed(_close_code(e))
        except (OSError, WebSocketException) as e:
            self.diagnostics.append(f"[WS] socket error: {describe_error(e)}")
            self._on_closed(None)

    def _on_closed(self, code: int | None) -> None:
        if self._closing:
            return
        self.diagnostics.append(f"[WS] socket closed (code: {code})")
        if self.state in (AuthState.CONNECTING, AuthState.AWAITING):
            self._fail_auth(
                TransportUnavailable(f"Connection closed before authentication (code: {code})")
            )
        elif not self.state.is_closed:
            self.state = AuthState.CLOSED_OK if code == 1000 else AuthState.CLOSED_ERROR
        self._fail_pending(TransportUnavailable(f"WebSocket closed (code: {code})"))

    async def _handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            self.diagnostics.append("[WS] failed to parse server message")
            return
        if not isinstance(frame, dict):
            self.diagnostics.append("[WS] ignored non-object frame")
            return
        data = cast(dict[str, Any], frame)
        frame_type = data.get("type")
        event = data.get("event")

        if frame_type == "event" and event == "connect.challenge":
            self.diagnostics.append("[WS] received connect.challenge")
            if self.state is AuthState.AWAITING:
                await self._send_connect()
            return

        if frame_type == "event" and event == "connect.ready":
            if self._mark_authenticated("[WS] received connect.ready"):
                return

        if frame_type == "res":
            self._handle_response(data)
            return

        if frame_type == "event" and event:
            self.diagnostics.append(f"[WS] event: {event}")

    def _handle_response(self, data: dict[str, Any]) -> None:
        response_id = data.get("id")
        ok = data.get("ok") is True

        if isinstance(response_id, str) and response_id in self._pending:
            request = self._pending.pop(response_id)
            if request.future.done():
                return
            if ok:
                request.future.set_result(data.get("payload"))
            else:
                request.future.set_exception(self._request_error(data.get("error")))
            return

        if self.state is not AuthState.AWAITING:
            if response_id is not None:
                self.diagnostics.append(f"[WS] ignored response with unknown id {response_id}")
            return

        if self._auth_request_id is not None and response_id == self._auth_request_id:
            if ok:
                self._mark_authenticated("[WS] auth response ok")
                return
            message = _error_message(data.get("error"), "Authentication failed")
            if ORIGIN_NOT_ALLOWED_RE.search(message):
                self.diagnostics.append(
                    "[WS] gateway rejected backend websocket origin; "
                    "use HTTP /tools/invoke for server-side discovery"
                )
                self._fail_auth(OriginRejected(message))
            else:
                self.diagnostics.append(f"[WS] auth rejected: {message}")
                self._fail_auth(AuthenticationFailure(message))
            return

        if ok:
            self._mark_authenticated("[WS] accepted generic successful response as auth success")

    @staticmethod
    def _request_error(error: Any) -> GatewayError:
        message = _error_message(error, "request failed")
        code = cast(dict[str, Any], error).get("code") if isinstance(error, dict) else None
        if isinstance(code, str) and code:
            return classify_error_message(f"{message} ({code})")
        return classify_error_message(message, code if isinstance(code, int) else None)

    # --- application calls -----------------------------------------------

    async def request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        if self.state is not AuthState.AUTHENTICATED or self._ws is None:
            raise TransportUnavailable("WebSocket not connected")

        request_id = self.next_request_id()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(id=request_id, method=method, future=future)
        frame = {"type": "req", "id": request_id, "method": method, "params": params or {}}
        try:
            await self._ws.send(json.dumps(frame))
            return await asyncio.wait_for(
                future, self.request_timeout if timeout is None else timeout
            )
        except asyncio.TimeoutError:
            raise TransportUnavailable(f"Request timeout for {method}") from None
        except (OSError, WebSocketException) as e:
            raise TransportUnavailable(f"Request {method} failed: {describe_error(e)}") from e
        finally:
            self._pending.pop(request_id, None)

    async def request_any(
        self, methods: Sequence[str], params: dict[str, Any] | None = None
    ) -> tuple[str, Any]:
        """Try method-name synonyms strictly in order; the first success wins."""
        chain: FallbackChain[str] = FallbackChain("[WS]", self.diagnostics, attempt_verb="request")
        success = await chain.arun(methods, lambda method: self.request(method, params))
        return success.candidate, success.value


########################################################
########   Call-level helpers                    #########
########################################################


async def ainvoke_via_socket_any(
    config: ConnectionConfig,
    methods: Sequence[str],
    params: dict[str, Any] | None = None,
    diagnostics: Diagnostics | None = None,
    connector: Connector | None = None,
    request_timeout: float = SOCKET_REQUEST_TIMEOUT,
) -> tuple[str, Any]:
    async with GatewaySocketSession(
        config, diagnostics, connector=connector, request_timeout=request_timeout
    ) as session:
        return await session.request_any(methods, params)


def invoke_via_socket_any(
    config: ConnectionConfig,
    methods: Sequence[str],
    params: dict[str, Any] | None = None,
    diagnostics: Diagnostics | None = None,
    connector: Connector | None = None,
    request_timeout: float = SOCKET_REQUEST_TIMEOUT,
) -> tuple[str, Any]:
    """Synchronous facade: open a session, try ``methods`` in order, tear down.

    Must not be called from a running event loop; use ``ainvoke_via_socket_any``.
    """
    return asyncio.run(
        ainvoke_via_socket_any(
            config,
            methods,
            params,
            diagnostics=diagnostics,
            connector=connector,
            request_timeout=request_timeout,
        )
    )


async def _query_section(
    session: GatewaySocketSession, label: str, methods: Sequence[str]
) -> Any | None:
    try:
        _, payload = await session.request_any(methods)
        return payload
    except AuthenticationFailure:
        raise
    except GatewayError as e:
        session.diagnostics.append(f"[WS] {label} query failed: {describe_error(e)}")
        return None


async def aquery_gateway_info_via_socket(
    config: ConnectionConfig,
    connector: Connector | None = None,
    diagnostics: Diagnostics | None = None,
) -> GatewayInfo:
    """Collect status, agents, channels and config over one socket session.

    Raises:
        GatewayError: When the session cannot be opened or authenticated. The
            exception carries the diagnostics trail.
    """
    trail = diagnostics if diagnostics is not None else Diagnostics(logger=_socket_log)
    info = GatewayInfo()
    try:
        async with GatewaySocketSession(config, trail, connector=connector) as session:
            status = await _query_section(session, "status", STATUS_METHODS)
            if status is not None:
                trail.extend(f"[WS] {note}" for note in apply_status(info, status))

            agents_payload = await _query_section(session, "agents", AGENTS_LIST_METHODS)
            agents = normalize_agents(extract_dataset(agents_payload, ["agents", "items", "data"]))
            if agents:
                info.agents = agents
                info.agent_count = len(agents)

            channels_payload = await _query_section(session, "channels", CHANNELS_METHODS)
            channels = normalize_channels(channels_payload)
            if channels:
                info.channels = channels
                info.channel_count = len(channels)

            if not info.model:
                config_payload = await _query_section(session, "config", CONFIG_GET_METHODS)
                trail.extend(f"[WS] {note}" for note in apply_config(info, config_payload))
    except GatewayError as e:
        e.diagnostics = trail.lines()
        raise

    info.diagnostics = trail.lines()
    return info


def query_gateway_info_via_socket(
    config: ConnectionConfig,
    connector: Connector | None = None,
    diagnostics: Diagnostics | None = None,
) -> GatewayInfo:
    return asyncio.run(
        aquery_gateway_info_via_socket(config, connector=connector, diagnostics=diagnostics)
    )


def test_socket_connectivity(
    config: ConnectionConfig, connector: Connector | None = None
) -> ConnectivityResult:
    """Quick socket check with a short budget; never raises."""
    try:
        info = query_gateway_info_via_socket(
            config.with_timeout(CONNECTIVITY_TEST_TIMEOUT_MS), connector=connector
        )
    except GatewayError as e:
        # Origin rejection still proves the gateway answered.
        connected = not isinstance(e, (AuthenticationFailure, TransportUnavailable)) or isinstance(
            e, OriginRejected
        )
        return ConnectivityResult(
            success=False,
            connected=connected,
            message=describe_error(e),
            error=describe_error(e),
            protocol="socket",
            diagnostics=e.diagnostics,
        )

    suffix = f" v{info.version}" if info.version != "unknown" else ""
    return ConnectivityResult(
        success=True,
        connected=True,
        message=f"Connected to gateway{suffix}",
        version=info.version,
        protocol="socket",
        diagnostics=info.diagnostics,
    )


# pytest would otherwise collect this public helper as a test function.
test_socket_connectivity.__test__ = False  # type: ignore[attr-defined]
