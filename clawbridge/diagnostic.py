"""Narrated connection diagnostics for humans troubleshooting a gateway.

Not used on the hot path: the trace records every stage of a raw socket
handshake next to a plain HTTP probe of the gateway root.
"""

import asyncio
import concurrent.futures
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests
from websockets.exceptions import ConnectionClosed, WebSocketException

from clawbridge.core.constants import (
    CLIENT_DESCRIPTOR,
    CLIENT_ROLE,
    CLIENT_SCOPES,
    DIAGNOSTIC_TIMEOUT,
    PROTOCOL_VERSION,
)
from clawbridge.core.urls import clean_token, convert_http_to_ws, convert_ws_to_http
from clawbridge.transports.socket_client import Connector, default_connector

_diagnostic_log = logging.getLogger("clawbridge.diagnostic")

HTML_PREVIEW_CHARS = 500
BODY_CHUNK_BYTES = 1024
# Slack on top of the caller timeout before an unfinished half is abandoned.
OVERALL_GRACE_SECONDS = 0.5


@dataclass
class TraceStep:
    success: bool
    stage: str
    message: str
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "stage": self.stage, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class DiagnosticReport:
    websocket: list[TraceStep] = field(default_factory=list)
    http: list[TraceStep] = field(default_factory=list)

    @property
    def handshake_succeeded(self) -> bool:
        return any(step.stage == "handshake-success" for step in self.websocket)

    def to_dict(self) -> dict[str, Any]:
        return {
            "websocket": [step.to_dict() for step in self.websocket],
            "http": [step.to_dict() for step in self.http],
        }


class _Trace(list):
    """List of TraceSteps that mirrors each step to the module logger."""

    def add(self, success: bool, stage: str, message: str, details: Any = None) -> None:
        _diagnostic_log.debug("[%s] %s", stage, message)
        self.append(TraceStep(success, stage, message, details))


def _connect_request(request_id: str, token: str) -> dict[str, Any]:
    return {
        "type": "req",
        "id": request_id,
        "method": "connect",
        "params": {
            "minProtocol": PROTOCOL_VERSION,
            "maxProtocol": PROTOCOL_VERSION,
            "client": dict(CLIENT_DESCRIPTOR),
            "role": CLIENT_ROLE,
            "scopes": list(CLIENT_SCOPES),
            "auth": {"token": token},
        },
    }


def _redacted(request: dict[str, Any]) -> dict[str, Any]:
    token = request["params"]["auth"]["token"]
    params = dict(request["params"], auth={"token": f"<{len(token)} chars>"})
    return dict(request, params=params)


async def _trace_socket(
    url: str, token: str, trace: _Trace, connector: Connector, timeout: float
) -> None:
    try:
        ws = await connector(url, timeout)
    except (OSError, WebSocketException, ValueError) as e:
        trace.add(False, "websocket-error", f"WebSocket error occurred: {e}")
        return

    try:
        trace.add(True, "websocket-open", "WebSocket connection established")
        request = _connect_request("diagnostic-1", token)
        trace.add(True, "sending-handshake", "Sending connect handshake", _redacted(request))
        await ws.send(json.dumps(request))

        while True:
            raw = await ws.recv()
            try:
                data = json.loads(raw)
            except (TypeError, ValueError) as e:
                trace.add(False, "parse-error", f"Failed to parse message: {e}")
                continue
            if not isinstance(data, dict):
                trace.add(False, "parse-error", "Received a non-object frame")
                continue

            trace.add(True, "message-received", f"Received: {data.get('type')}", data)
            if data.get("type") == "event" and data.get("event") == "connect.challenge":
                trace.add(True, "challenge-received", "Server sent connection challenge", data.get("payload"))
            if data.get("type") != "res":
                continue

            payload = data.get("payload")
            hello = isinstance(payload, dict) and payload.get("type") == "hello-ok"
            if data.get("ok") is True and (hello or data.get("id") == request["id"]):
                trace.add(True, "handshake-success", "Handshake successful!", payload)
                return
            if data.get("ok") is not True:
                error = data.get("error")
                message = error.get("message") if isinstance(error, dict) else None
                trace.add(False, "handshake-failed", f"Handshake failed: {message or 'Unknown error'}", error)
    except ConnectionClosed as e:
        received = getattr(e, "rcvd", None)
        code = received.code if received is not None else 1006
        reason = received.reason if received is not None else ""
        trace.add(
            code == 1000,
            "websocket-close",
            f"Connection closed (code: {code}, reason: {reason or 'none'})",
            {"code": code, "reason": reason},
        )
    except (OSError, WebSocketException) as e:
        trace.add(False, "websocket-error", f"WebSocket error occurred: {e}")
    finally:
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            _diagnostic_log.debug("Ignoring error while closing diagnostic socket: %s", e)


async def adiagnose_socket_connection(
    ws_url: str,
    token: str,
    timeout: float = DIAGNOSTIC_TIMEOUT,
    connector: Connector | None = None,
) -> list[TraceStep]:
    url = convert_http_to_ws(ws_url)
    trace = _Trace()
    trace.add(True, "init", f"Starting diagnosis for {url}")
    try:
        await asyncio.wait_for(
            _trace_socket(url, clean_token(token), trace, connector or default_connector, timeout),
            timeout,
        )
    except asyncio.TimeoutError:
        trace.add(False, "timeout", f"Connection timeout after {timeout:g} seconds")
    return list(trace)


def diagnose_socket_connection(
    ws_url: str,
    token: str,
    timeout: float = DIAGNOSTIC_TIMEOUT,
    connector: Connector | None = None,
) -> list[TraceStep]:
    return asyncio.run(adiagnose_socket_connection(ws_url, token, timeout, connector))


def _read_body(response: requests.Response, deadline: float) -> bytes | None:
    """Read the streamed body, giving up once the wall-clock deadline passes."""
    chunks: list[bytes] = []
    for chunk in response.iter_content(chunk_size=BODY_CHUNK_BYTES):
        if time.monotonic() > deadline:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def test_http_endpoints(url: str, token: str, timeout: float = DIAGNOSTIC_TIMEOUT) -> list[TraceStep]:
    """Probe the gateway root over plain HTTP and describe what came back.

    ``timeout`` bounds the whole probe, body included, not just each socket read.
    """
    deadline = time.monotonic() + timeout
    base_url = convert_ws_to_http(url)
    trace = _Trace()
    trace.add(True, "http-init", f"Testing HTTP endpoints at {base_url}")
    try:
        response = requests.get(
            base_url,
            headers={"Authorization": f"Bearer {clean_token(token)}"},
            timeout=timeout,
            stream=True,
        )
    except requests.RequestException as e:
        trace.add(False, "http-root-error", f"HTTP request failed: {e}")
        return list(trace)

    try:
        ok = 200 <= response.status_code < 300
        trace.add(
            ok,
            "http-root",
            f"Root endpoint: {response.status_code} {response.reason or ''}".rstrip(),
            {"status": response.status_code},
        )
        if not ok:
            return list(trace)

        content_type = response.headers.get("content-type", "")
        trace.add(True, "http-content-type", f"Content-Type: {content_type or 'none'}")
        try:
            body = _read_body(response, deadline)
        except requests.RequestException as e:
            trace.add(False, "http-root-error", f"HTTP body read failed: {e}")
            return list(trace)
        if body is None:
            trace.add(False, "http-timeout", f"HTTP probe did not finish within {timeout:g} seconds")
            return list(trace)
    finally:
        response.close()

    text = body.decode(response.encoding or "utf-8", errors="replace")
    if "application/json" in content_type:
        try:
            trace.add(True, "http-json", "Received JSON response", json.loads(text))
        except ValueError:
            trace.add(False, "http-json", "Declared JSON but body did not parse")
    else:
        trace.add(
            True,
            "http-html",
            f"Received HTML ({len(body)} bytes)",
            {"preview": text[:HTML_PREVIEW_CHARS]},
        )
    return list(trace)


test_http_endpoints.__test__ = False  # type: ignore[attr-defined]


def _in_daemon_thread(func: Callable[..., Any], *args: Any) -> "asyncio.Future[Any]":
    """Run ``func`` on a daemon thread; an abandoned call never holds up loop shutdown."""
    result: concurrent.futures.Future[Any] = concurrent.futures.Future()

    def work() -> None:
        if not result.set_running_or_notify_cancel():
            return
        try:
            result.set_result(func(*args))
        except Exception as e:
            result.set_exception(e)

    threading.Thread(target=work, daemon=True, name="clawbridge-diagnostic-http").start()
    return asyncio.wrap_future(result)


async def arun_full_diagnostic(
    ws_url: str,
    token: str,
    timeout: float = DIAGNOSTIC_TIMEOUT,
    connector: Connector | None = None,
) -> DiagnosticReport:
    socket_task = asyncio.create_task(adiagnose_socket_connection(ws_url, token, timeout, connector))
    http_task = _in_daemon_thread(test_http_endpoints, ws_url, token, timeout)
    await asyncio.wait({socket_task, http_task}, timeout=timeout + OVERALL_GRACE_SECONDS)

    report = DiagnosticReport()
    for task, steps in ((socket_task, report.websocket), (http_task, report.http)):
        if task.done():
            steps.extend(task.result())
        else:
            task.cancel()
            steps.append(TraceStep(False, "timeout", f"Diagnostic did not finish within {timeout:g} seconds"))
    return report


def run_full_diagnostic(
    ws_url: str,
    token: str,
    timeout: float = DIAGNOSTIC_TIMEOUT,
    connector: Connector | None = None,
) -> DiagnosticReport:
    """Run the socket trace and the HTTP probe concurrently under one overall deadline."""
    return asyncio.run(arun_full_diagnostic(ws_url, token, timeout, connector))
