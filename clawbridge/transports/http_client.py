"""HTTP tool client: stateless ``POST {base}/tools/invoke`` calls plus plain REST GETs."""

import logging
from collections.abc import Sequence
from typing import Any, cast

import requests

from clawbridge.core.constants import (
    AGENTS_LIST_METHODS,
    CHANNELS_METHODS,
    CONFIG_GET_METHODS,
    CONFIG_SET_METHODS,
    CONNECTIVITY_TEST_TIMEOUT_MS,
    SEND_MESSAGE_METHODS,
    SESSION_MESSAGES_METHODS,
    SESSIONS_LIST_METHODS,
    STATUS_METHODS,
)
from clawbridge.core.errors import (
    POLICY_DENIED_RE,
    AuthenticationFailure,
    EndpointNotFound,
    ExhaustedFallback,
    GatewayError,
    GatewayRequestError,
    MalformedResponse,
    PolicyDenied,
    TransportUnavailable,
    classify_error_message,
    describe_error,
    is_policy_denial,
)
from clawbridge.core.extraction import (
    apply_config,
    apply_status,
    extract_dataset,
    looks_like_html,
    normalize_agents,
    normalize_channels,
    parse_json_safely,
    unwrap_tool_result,
)
from clawbridge.core.fallback import FallbackChain
from clawbridge.core.types import (
    ConnectionConfig,
    ConnectivityResult,
    Diagnostics,
    GatewayAgent,
    GatewayChannel,
    GatewayInfo,
)

_http_log = logging.getLogger("clawbridge.http")


def _body_error_message(text: str) -> str | None:
    body = parse_json_safely(text)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error:
            return error
        if isinstance(body.get("message"), str) and body["message"]:
            return body["message"]
    return None


class HttpToolClient:
    """Low-level tool invocation against one gateway.

    Args:
        config: Target, credentials and session key.
        diagnostics: Trail shared with the caller; a private one is created when omitted.
        timeout: Per-request timeout in seconds (defaults to ``config.timeout_seconds``).
    """

    def __init__(
        self,
        config: ConnectionConfig,
        diagnostics: Diagnostics | None = None,
        timeout: float | None = None,
    ):
        self.config = config
        self.base_url = config.http_url
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(logger=_http_log)
        self.timeout = timeout if timeout is not None else config.timeout_seconds

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.bearer_token}",
            "Content-Type": "application/json",
        }
        if self.config.password:
            headers["X-Gateway-Password"] = self.config.password
        return headers

    def invoke_tool(
        self,
        tool: str,
        args: dict[str, Any] | None = None,
        action: str = "json",
        dry_run: bool = False,
    ) -> Any:
        body = {
            "tool": tool,
            "action": action,
            "args": args or {},
            "sessionKey": self.config.session_key,
            "dryRun": dry_run,
        }
        try:
            response = requests.post(
                f"{self.base_url}/tools/invoke",
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise TransportUnavailable(
                f"Request timeout after {int(self.timeout * 1000)}ms"
            ) from None
        except requests.RequestException as e:
            raise TransportUnavailable(f"HTTP request to {self.base_url} failed: {e}") from e

        status = response.status_code
        if status == 401:
            raise AuthenticationFailure("Authentication failed - check your token", status=401)
        if status == 404:
            raise EndpointNotFound(f"Tool '{tool}' unavailable on this gateway", status=404)
        text = response.text or ""
        if not 200 <= status < 300:
            message = _body_error_message(text) or f"HTTP {status}"
            if POLICY_DENIED_RE.search(text) or POLICY_DENIED_RE.search(message):
                raise PolicyDenied(message, status=status)
            raise GatewayRequestError(message, status=status)

        data = parse_json_safely(text)
        if data is None:
            raise MalformedResponse(f"Tool '{tool}' returned a non-JSON response", status=status)
        if isinstance(data, dict) and data.get("ok") is False:
            message = _body_error_message(text) or f"Tool '{tool}' failed"
            raise classify_error_message(message)
        return unwrap_tool_result(data)

    def invoke_tool_any(self, tools: Sequence[str], args: dict[str, Any] | None = None) -> Any:
        """Try tool-name synonyms in order; exhaustion re-raises the last error."""
        chain: FallbackChain[str] = FallbackChain(
            "[HTTP]", self.diagnostics, attempt_verb="trying tool:"
        )
        try:
            return chain.run(tools, lambda tool: self.invoke_tool(tool, args)).value
        except ExhaustedFallback as e:
            if isinstance(e.last_error, GatewayError):
                raise e.last_error from e
            raise

    def get_json(self, path: str) -> Any:
        """GET ``{base}{path}`` and return its JSON body; HTML answers are rejected."""
        url = f"{self.base_url}{path}"
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout:
            raise TransportUnavailable(f"GET {path} timed out") from None
        except requests.RequestException as e:
            raise TransportUnavailable(f"GET {path} failed: {e}") from e

        status = response.status_code
        if status == 401:
            raise AuthenticationFailure("Authentication failed - check your token", status=401)
        if not 200 <= status < 300:
            raise GatewayRequestError(f"HTTP {status}", status=status)
        text = response.text or ""
        content_type = response.headers.get("content-type", "")
        if looks_like_html(text, content_type):
            self.diagnostics.append(f"[HTTP] {path} returned HTML (likely UI route)")
            raise MalformedResponse(f"{path} returned HTML, not JSON", status=status)
        data = parse_json_safely(text)
        if data is None:
            raise MalformedResponse(f"{path} returned a non-JSON response", status=status)
        return data


########################################################
########   Aggregate gateway info query          #########
########################################################


def query_gateway_info_via_http(
    config: ConnectionConfig, diagnostics: Diagnostics | None = None
) -> GatewayInfo:
    """Run the status/agents/channels/config queries and merge what succeeded.

    Raises:
        AuthenticationFailure: On a 401; the remaining queries are not attempted.
        TransportUnavailable: The gateway could not be reached at all.
        PolicyDenied: Nothing usable came back and a failure looked like a policy block.
        ExhaustedFallback: Nothing usable came back for any other reason.
    """
    trail = diagnostics if diagnostics is not None else Diagnostics(logger=_http_log)
    client = HttpToolClient(config, trail)
    trail.append(f"[HTTP] Connecting to {client.base_url}")
    trail.append(f"[HTTP] Token length: {len(config.bearer_token)} chars (cleaned)")

    info = GatewayInfo()
    failures: list[tuple[str, Exception]] = []
    missing_tools: set[str] = set()
    succeeded = 0

    def query(label: str, tools: Sequence[str]) -> Any | None:
        nonlocal succeeded
        try:
            payload = client.invoke_tool_any(tools)
        except (AuthenticationFailure, TransportUnavailable):
            raise
        except GatewayError as e:
            failures.append((label, e))
            if isinstance(e, EndpointNotFound):
                missing_tools.add(label)
            trail.append(f"[HTTP] {label} query failed: {describe_error(e)}")
            return None
        succeeded += 1
        trail.append(f"[HTTP] {label} response received")
        return payload

    try:
        status = query("status", STATUS_METHODS)
        if status is not None:
            trail.extend(f"[HTTP] {note}" for note in apply_status(info, status))

        agents = normalize_agents(extract_dataset(query("agents", AGENTS_LIST_METHODS)))
        if agents:
            info.agents = agents
            info.agent_count = len(agents)
            trail.append(f"[HTTP] Found {len(agents)} agents")

        channels = normalize_channels(query("channels", CHANNELS_METHODS))
        if channels:
            info.channels = channels
            info.channel_count = len(channels)
            trail.append(f"[HTTP] Found {len(channels)} channels")

        if info.model:
            trail.append("[HTTP] config query skipped (model already found)")
        else:
            config_payload = query("config", CONFIG_GET_METHODS)
            trail.extend(f"[HTTP] {note}" for note in apply_config(info, config_payload))
    except AuthenticationFailure as e:
        trail.append(f"[HTTP] Authentication failed: {describe_error(e)}")
        e.diagnostics = trail.lines()
        raise
    except TransportUnavailable as e:
        trail.append(f"[HTTP] Gateway unreachable: {describe_error(e)}")
        e.diagnostics = trail.lines()
        raise

    if (
        (info.agent_count or 0) > 0
        and info.version == "unknown"
        and {"status", "channels", "config"} <= missing_tools
    ):
        trail.append("[HTTP] Gateway appears reachable with a minimal tool profile (agents_list only)")

    if not info.has_strong_signal and succeeded == 0:
        if any(is_policy_denial(error) for _, error in failures):
            trail.append("[HTTP] No strong signal found; tool policy likely blocking metadata tools")
            raise PolicyDenied(
                "Gateway reachable, but requested tools are blocked by policy",
                diagnostics=trail.lines(),
            )
        trail.append("[HTTP] No strong signal found from status/agents/channels/config")
        raise ExhaustedFallback(
            "Gateway reachable, but no metadata returned from current endpoints",
            errors=failures,
            diagnostics=trail.lines(),
        )

    info.diagnostics = trail.lines()
    return info


def test_http_connectivity(config: ConnectionConfig) -> ConnectivityResult:
    """Quick HTTP check with a short budget; never raises."""
    try:
        info = query_gateway_info_via_http(config.with_timeout(CONNECTIVITY_TEST_TIMEOUT_MS))
    except GatewayError as e:
        return ConnectivityResult(
            success=False,
            connected=not isinstance(e, (AuthenticationFailure, TransportUnavailable)),
            message=describe_error(e),
            error=describe_error(e),
            protocol="http",
            diagnostics=e.diagnostics,
        )
    suffix = f" v{info.version}" if info.version != "unknown" else ""
    return ConnectivityResult(
        success=True,
        connected=True,
        message=f"Connected to gateway{suffix}",
        version=info.version,
        protocol="http",
        diagnostics=info.diagnostics,
    )


test_http_connectivity.__test__ = False  # type: ignore[attr-defined]


########################################################
########   High-level client                     #########
########################################################


class GatewayHttpClient:
    """Convenience wrapper over HttpToolClient for the common gateway operations."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self.tools = HttpToolClient(config)

    def get_gateway_info(self) -> GatewayInfo:
        return query_gateway_info_via_http(self.config)

    def get_status(self) -> dict[str, Any]:
        info = GatewayInfo()
        apply_status(info, self.tools.invoke_tool("status"))
        return {
            "version": info.version,
            "uptime": info.uptime,
            "model": info.model,
            "provider": info.provider,
        }

    def list_agents(self) -> list[GatewayAgent]:
        payload = self.tools.invoke_tool_any(AGENTS_LIST_METHODS)
        return normalize_agents(extract_dataset(payload, ["agents", "items", "data"]))

    def list_sessions(self) -> list[Any]:
        return extract_dataset(self.tools.invoke_tool_any(SESSIONS_LIST_METHODS), ["sessions"])

    def get_session_messages(self, session_key: str | None = None) -> list[dict[str, Any]]:
        payload = self.tools.invoke_tool_any(
            SESSION_MESSAGES_METHODS, {"sessionKey": session_key or self.config.session_key}
        )
        raw = extract_dataset(payload, ["messages", "history"])
        messages = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                continue
            message = cast(dict[str, Any], item)
            messages.append(
                {
                    "id": message.get("id") or f"msg-{index}",
                    "content": message.get("content") or message.get("text") or message.get("message") or "",
                    "from": message.get("from") or message.get("role") or message.get("author"),
                    "timestamp": message.get("timestamp") or message.get("createdAt"),
                }
            )
        return messages

    def send_message(self, message: str, session_key: str | None = None) -> dict[str, Any]:
        try:
            result = self.tools.invoke_tool_any(
                SEND_MESSAGE_METHODS,
                {"sessionKey": session_key or self.config.session_key, "message": message},
            )
        except GatewayError as e:
            return {"success": False, "response": describe_error(e)}
        reply = None
        if isinstance(result, dict):
            reply = result.get("response") or result.get("reply")
        return {"success": True, "response": reply or "Message sent"}

    def get_config(self) -> dict[str, Any]:
        result = self.tools.invoke_tool_any(CONFIG_GET_METHODS)
        return cast(dict[str, Any], result) if isinstance(result, dict) else {}

    def update_config(self, updates: dict[str, Any]) -> bool:
        try:
            self.tools.invoke_tool_any(CONFIG_SET_METHODS, updates)
        except GatewayError as e:
            _http_log.warning("Failed to update gateway config: %s", e)
            return False
        return True

    def get_channel_status(self) -> list[GatewayChannel]:
        return normalize_channels(self.tools.invoke_tool_any(CHANNELS_METHODS))

    def test_connection(self) -> ConnectivityResult:
        try:
            status = self.get_status()
        except GatewayError as e:
            return ConnectivityResult(
                success=False,
                connected=not isinstance(e, (AuthenticationFailure, TransportUnavailable)),
                message=describe_error(e),
                error=describe_error(e),
                protocol="http",
            )
        return ConnectivityResult(
            success=True,
            connected=True,
            message=f"Connected to gateway v{status['version']}",
            version=status["version"],
            protocol="http",
        )
