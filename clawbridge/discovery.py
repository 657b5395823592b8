"""Gateway discovery: learn what a gateway is and exposes, whatever transport works.

Stages, in order: HTTP tool queries, socket queries, HTTP once more, then an
unauthenticated-style probe of well-known REST paths. Discovery never raises;
the returned GatewayInfo carries ``error`` only when nothing usable was found.
"""

import logging
from typing import Any
from urllib.parse import urlparse

import requests

from clawbridge.core.constants import (
    BASIC_CHECK_TIMEOUT,
    CONNECTIVITY_TEST_TIMEOUT_MS,
    PROBE_TIMEOUT,
)
from clawbridge.core.errors import AuthenticationFailure, GatewayError, describe_error
from clawbridge.core.extraction import (
    apply_config,
    extract_dataset,
    parse_json_safely,
    scrape_version,
)
from clawbridge.core.types import ConnectionConfig, ConnectivityResult, Diagnostics, GatewayInfo
from clawbridge.core.urls import is_local_gateway_url
from clawbridge.transports.http_client import query_gateway_info_via_http
from clawbridge.transports.socket_client import Connector, query_gateway_info_via_socket

_discovery_log = logging.getLogger("clawbridge.discovery")

DISCOVERY_FAILED_MESSAGE = "Unable to discover gateway details via WebSocket or HTTP fallback"


def _finish(info: GatewayInfo, trail: Diagnostics) -> GatewayInfo:
    info.diagnostics = trail.lines()
    return info


def discover_gateway_info(
    config: ConnectionConfig, connector: Connector | None = None
) -> GatewayInfo:
    trail = Diagnostics(logger=_discovery_log)
    local = is_local_gateway_url(config.server_url)
    trail.append(
        "Using HTTP API first (local gateway mode)"
        if local
        else "Using HTTP API first (remote gateway mode, avoids Control UI origin restrictions)"
    )

    auth_error: AuthenticationFailure | None = None

    try:
        info = query_gateway_info_via_http(config, diagnostics=trail)
        trail.append("HTTP API query successful")
        return _finish(info, trail)
    except AuthenticationFailure as e:
        auth_error = e
        trail.append(f"HTTP first-pass rejected credentials: {describe_error(e)}")
    except GatewayError as e:
        trail.append(f"HTTP first-pass failed: {describe_error(e)}")

    if auth_error is None:
        trail.append("Using WebSocket API" if local else "Using WebSocket API (fallback only)")
        try:
            info = query_gateway_info_via_socket(config, connector=connector, diagnostics=trail)
            trail.append("WebSocket query successful")
            return _finish(info, trail)
        except AuthenticationFailure as e:
            auth_error = e
            trail.append(f"WebSocket rejected credentials: {describe_error(e)}")
        except GatewayError as e:
            trail.append(f"WebSocket failed: {describe_error(e)}")

    if auth_error is None:
        trail.append("Falling back to HTTP API")
        try:
            info = query_gateway_info_via_http(config, diagnostics=trail)
            trail.append("HTTP API fallback successful")
            return _finish(info, trail)
        except AuthenticationFailure as e:
            auth_error = e
            trail.append(f"HTTP fallback rejected credentials: {describe_error(e)}")
        except GatewayError as e:
            trail.append(f"HTTP fallback also failed: {describe_error(e)}")
    else:
        trail.append("Skipping authenticated retries after authentication failure")

    info = fallback_http_probe(config, trail)
    if auth_error is not None:
        info.error_details = describe_error(auth_error)
    return info


def _probe(base_url: str, path: str, token: str, trail: Diagnostics) -> Any | None:
    try:
        response = requests.get(
            f"{base_url}{path}",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json, text/html"},
            timeout=PROBE_TIMEOUT,
        )
    except requests.RequestException as e:
        trail.append(f"[fallback] {path} failed: {e}")
        return None

    if not 200 <= response.status_code < 300:
        trail.append(f"[fallback] {path} -> HTTP {response.status_code}")
        return None
    text = response.text or ""
    if "application/json" in response.headers.get("content-type", ""):
        return parse_json_safely(text)
    version = scrape_version(text)
    return {"version": version} if version else None


def _count(payload: Any, key: str) -> int | None:
    if isinstance(payload, list) or (isinstance(payload, dict) and isinstance(payload.get(key), list)):
        return len(extract_dataset(payload, [key]))
    return None


def fallback_http_probe(config: ConnectionConfig, trail: Diagnostics) -> GatewayInfo:
    """Last resort: GET well-known paths, scraping a version out of HTML if needed."""
    base_url, token = config.http_url, config.bearer_token
    trail.append("[fallback] probing HTTP endpoints")

    root = _probe(base_url, "/", token, trail)
    status = _probe(base_url, "/api/status", token, trail) or _probe(base_url, "/status", token, trail)
    gateway_config = _probe(base_url, "/api/config", token, trail)
    agents = _probe(base_url, "/api/agents", token, trail)
    channels = _probe(base_url, "/api/channels", token, trail) or _probe(
        base_url, "/api/channel/status", token, trail
    )

    info = GatewayInfo()
    merged = status or root
    if isinstance(merged, dict):
        if merged.get("version"):
            info.version = str(merged["version"])
        if merged.get("uptime"):
            info.uptime = str(merged["uptime"])
        if isinstance(merged.get("config"), dict):
            info.config = merged["config"]
    trail.extend(f"[fallback] {note}" for note in apply_config(info, gateway_config))
    info.agent_count = _count(agents, "agents")
    info.channel_count = _count(channels, "channels")

    if not info.has_strong_signal:
        info.error = DISCOVERY_FAILED_MESSAGE
    return _finish(info, trail)


def check_gateway_connection(config: ConnectionConfig) -> ConnectivityResult:
    """Tri-outcome check: works / reachable but failing / unreachable or rejected.

    The HTTP tool test runs first; when it fails for any reason other than
    rejected credentials, a basic ``GET /`` decides whether the gateway is
    reachable at all.
    """
    trail = Diagnostics(logger=_discovery_log)
    host = urlparse(config.http_url).netloc or config.http_url
    try:
        info = query_gateway_info_via_http(
            config.with_timeout(CONNECTIVITY_TEST_TIMEOUT_MS), diagnostics=trail
        )
    except AuthenticationFailure as e:
        return ConnectivityResult(
            success=False,
            connected=False,
            message="Authentication failed. The gateway token is invalid or expired.",
            error=describe_error(e),
            protocol="http",
            diagnostics=trail.lines(),
        )
    except GatewayError as e:
        tool_error = describe_error(e)
        trail.append(f"[check] tool test failed: {tool_error}; trying basic GET /")
    else:
        suffix = f" v{info.version}" if info.version != "unknown" else ""
        return ConnectivityResult(
            success=True,
            connected=True,
            message=f"Connected to gateway{suffix}",
            version=info.version,
            protocol="http",
            diagnostics=trail.lines(),
        )

    try:
        response = requests.get(
            f"{config.http_url}/",
            headers={"Authorization": f"Bearer {config.bearer_token}"},
            timeout=BASIC_CHECK_TIMEOUT,
        )
    except requests.RequestException as e:
        trail.append(f"[check] GET / failed: {e}")
        return ConnectivityResult(
            success=False,
            connected=False,
            message=f"Failed to connect to gateway at {host}",
            error=describe_error(e),
            protocol="http",
            diagnostics=trail.lines(),
        )

    status = response.status_code
    trail.append(f"[check] GET / -> HTTP {status}")
    if status == 401:
        return ConnectivityResult(
            success=False,
            connected=False,
            message="Authentication failed. The gateway token is invalid or expired.",
            error="Authentication failed",
            protocol="http",
            diagnostics=trail.lines(),
        )
    if 200 <= status < 300:
        message = f"Gateway at {host} is reachable, but tool queries failed"
    else:
        message = f"Gateway at {host} returned status {status}"
    return ConnectivityResult(
        success=False,
        connected=True,
        message=message,
        error=tool_error,
        protocol="http",
        diagnostics=trail.lines(),
    )
