"""
Bridge between the management application and a gateway whose capabilities are unknown.

Every query cascades through the transports in a fixed order:

    socket tool call -> HTTP /tools/invoke -> REST GET paths -> local CLI

Each stage appends to the diagnostics trail. An authentication failure
short-circuits every remaining stage; any other failure moves on to the next
candidate or stage. Only when every stage is exhausted is the call reported as
failed, distinguishing "gateway did not respond" from "gateway reachable but
nothing matched".
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from clawbridge.core.constants import (
    AGENTS_LIST_METHODS,
    AGENTS_REST_PATHS,
    BRIDGE_HTTP_TIMEOUT,
    BRIDGE_SOCKET_TIMEOUT,
    CREATE_AGENT_TOOLS,
)
from clawbridge.core.errors import (
    AuthenticationFailure,
    EndpointNotFound,
    ExhaustedFallback,
    GatewayError,
    OriginRejected,
    TransportUnavailable,
    describe_error,
)
from clawbridge.core.extraction import extract_dataset, parse_agent_id, unwrap_socket_payload
from clawbridge.core.fallback import ChainSuccess, FallbackChain
from clawbridge.core.types import (
    AgentsProbeResult,
    ConnectionConfig,
    CreateAgentResult,
    DatasetResult,
    Diagnostics,
)
from clawbridge.transports.cli_adapter import CliAdapter, CliJsonResult
from clawbridge.transports.http_client import HttpToolClient
from clawbridge.transports.socket_client import Connector, invoke_via_socket_any

_bridge_log = logging.getLogger("clawbridge.bridge")

AUTH_FAILED_MESSAGE = "Gateway authentication failed"

C = TypeVar("C")

CliFallback = Callable[[CliAdapter], CliJsonResult]


def gateway_responded(error: BaseException) -> bool:
    """True when ``error`` proves the gateway answered (even if it said no)."""
    if isinstance(error, OriginRejected):
        return True
    return not isinstance(error, TransportUnavailable)


def _socket_candidates(tool: str) -> list[str]:
    return list(dict.fromkeys([tool, tool.replace("_", ".")]))


class GatewayBridge:
    """Capability-negotiating client for one gateway.

    Args:
        config: Target and credentials, passed by value to every transport call.
        cli: Optional CLI adapter; the CLI stage only runs when one is supplied.
        connector: Websocket connector override (tests use a scripted fake).
    """

    def __init__(
        self,
        config: ConnectionConfig,
        cli: CliAdapter | None = None,
        connector: Connector | None = None,
        socket_timeout: float = BRIDGE_SOCKET_TIMEOUT,
        http_timeout: float = BRIDGE_HTTP_TIMEOUT,
    ):
        self.config = config
        self.cli = cli
        self.connector = connector
        self.socket_timeout = socket_timeout
        self.http_timeout = http_timeout

    def _new_trail(self) -> Diagnostics:
        return Diagnostics(logger=_bridge_log)

    def _http(self, trail: Diagnostics) -> HttpToolClient:
        return HttpToolClient(self.config, trail, timeout=self.http_timeout)

    # --- per-tool cascade ---

    def invoke_tool_with_source(
        self, tool: str, args: dict[str, Any] | None = None, trail: Diagnostics | None = None
    ) -> tuple[str, Any]:
        """Invoke ``tool`` over the socket, falling back to HTTP; returns (transport, payload)."""
        trail = trail if trail is not None else self._new_trail()
        socket_config = self.config.with_timeout(int(self.socket_timeout * 1000))
        try:
            _, payload = invoke_via_socket_any(
                socket_config,
                _socket_candidates(tool),
                args or {},
                diagnostics=trail,
                connector=self.connector,
            )
            return "socket", unwrap_socket_payload(payload)
        except AuthenticationFailure:
            raise
        except GatewayError as e:
            trail.append(f"[bridge] socket stage failed for {tool}: {describe_error(e)}")
            _bridge_log.info("Socket stage failed for %s, falling back to HTTP: %s", tool, e)

        return "http", self._http(trail).invoke_tool(tool, args or {})

    def invoke_tool(
        self, tool: str, args: dict[str, Any] | None = None, trail: Diagnostics | None = None
    ) -> Any:
        return self.invoke_tool_with_source(tool, args, trail)[1]

    def _run_stage(
        self,
        label: str,
        trail: Diagnostics,
        candidates: Sequence[C],
        attempt: Callable[[C], Any],
    ) -> tuple[ChainSuccess[C, Any] | None, bool]:
        """Run one stage; returns (success or None, whether the gateway answered)."""
        chain: FallbackChain[C] = FallbackChain(label, trail)
        try:
            return chain.run(candidates, attempt), True
        except ExhaustedFallback as e:
            return None, any(gateway_responded(error) for _, error in e.errors)

    # --- agents ---

    def probe_agents(self) -> AgentsProbeResult:
        trail = self._new_trail()
        responded = False
        try:
            success, answered = self._run_stage(
                "[tool]", trail, AGENTS_LIST_METHODS, lambda tool: self.invoke_tool(tool, {}, trail)
            )
            responded = responded or answered
            if success is not None:
                agents = extract_dataset(success.value, ["agents", "data", "items"])
                trail.append(f"[tool] {success.candidate} ok ({len(agents)} agents)")
                return AgentsProbeResult(True, True, agents, trail.lines())

            http = self._http(trail)
            success, answered = self._run_stage(
                "[http]", trail, AGENTS_REST_PATHS, lambda path: extract_dataset(http.get_json(path))
            )
            responded = responded or answered
            if success is not None:
                trail.append(f"[http] {success.candidate} ok ({len(success.value)} agents)")
                return AgentsProbeResult(True, True, success.value, trail.lines())
        except AuthenticationFailure as e:
            trail.append(f"[bridge] authentication failed: {describe_error(e)}")
            return AgentsProbeResult(False, False, [], trail.lines(), error=AUTH_FAILED_MESSAGE)

        if self.cli is not None:
            trail.append("[cli] no agent list command available; skipping")

        error = (
            "Gateway reachable but agent list capability is unavailable in this runtime profile"
            if responded
            else "Gateway did not respond"
        )
        return AgentsProbeResult(False, responded, [], trail.lines(), error=error)

    def fetch_agents_list(self) -> list[Any]:
        return self.probe_agents().agents

    def create_agent(self, args: dict[str, Any]) -> CreateAgentResult:
        """Create an agent through the first creation tool the gateway exposes, then the CLI."""
        trail = self._new_trail()
        responded = False
        tool_error: str | None = None

        for tool in CREATE_AGENT_TOOLS:
            trail.append(f"[tool] trying {tool}")
            try:
                method, payload = self.invoke_tool_with_source(tool, args, trail)
            except AuthenticationFailure:
                trail.append(f"[tool] {tool} unauthorized")
                return CreateAgentResult(False, error=AUTH_FAILED_MESSAGE, diagnostics=trail.lines())
            except GatewayError as e:
                if isinstance(e, EndpointNotFound) or e.status == 400:
                    responded = True
                    trail.append(f"[tool] {tool} unavailable")
                    continue
                tool_error = describe_error(e)
                trail.append(f"[tool] {tool} failed: {tool_error}")
                break
            trail.append(f"[tool] {tool} ok")
            return CreateAgentResult(
                True, agent_id=parse_agent_id(payload), method=method, diagnostics=trail.lines()
            )

        if tool_error is None:
            tool_error = (
                "Gateway runtime does not expose any agent creation tool (plugin/bridge capability missing)"
                if responded
                else "Gateway did not respond to creation requests"
            )

        if self.cli is None:
            return CreateAgentResult(False, error=tool_error, diagnostics=trail.lines())

        trail.append("[cli] falling back to local CLI for agent creation")
        cli_result = self.cli.create_agent(
            name=str(args.get("name") or ""),
            model=args.get("model"),
            emoji=args.get("emoji"),
            avatar=args.get("avatar"),
            workspace_dir=args.get("workspaceDir") or args.get("workspace"),
        )
        trail.extend(cli_result.diagnostics)
        if cli_result.created:
            return CreateAgentResult(
                True, agent_id=cli_result.agent_id, method="cli", diagnostics=trail.lines()
            )
        return CreateAgentResult(
            False,
            error=f"{tool_error}; CLI fallback failed: {cli_result.error}",
            diagnostics=trail.lines(),
        )

    # --- datasets ---

    def fetch_dataset(
        self,
        kind: str,
        tool_candidates: Sequence[str],
        http_candidates: Sequence[str],
        cli_fallback: CliFallback | None = None,
        cli_extract: Callable[[Any], list[Any]] = extract_dataset,
        tool_args: dict[str, Any] | None = None,
    ) -> DatasetResult:
        trail = self._new_trail()
        responded = False
        try:
            success, answered = self._run_stage(
                f"[tool:{kind}]",
                trail,
                tool_candidates,
                lambda tool: extract_dataset(self.invoke_tool(tool, tool_args, trail)),
            )
            responded = responded or answered
            if success is not None:
                trail.append(f"[tool:{success.candidate}] success ({len(success.value)} items)")
                return DatasetResult(kind, True, True, "tool", success.value, trail.lines())

            http = self._http(trail)
            success, answered = self._run_stage(
                f"[http:{kind}]", trail, http_candidates, lambda path: extract_dataset(http.get_json(path))
            )
            responded = responded or answered
            if success is not None:
                trail.append(f"[http:{success.candidate}] success ({len(success.value)} items)")
                return DatasetResult(kind, True, True, "http", success.value, trail.lines())
        except AuthenticationFailure as e:
            trail.append(f"[bridge] authentication failed: {describe_error(e)}")
            return DatasetResult(kind, diagnostics=trail.lines(), error_details=AUTH_FAILED_MESSAGE)

        if self.cli is not None and cli_fallback is not None:
            cli_result = cli_fallback(self.cli)
            trail.extend(cli_result.diagnostics)
            if cli_result.ok:
                items = cli_extract(cli_result.payload)
                trail.append(f"[cli] success ({len(items)} items)")
                return DatasetResult(kind, True, True, "cli", items, trail.lines())
            trail.append(f"[cli] {cli_result.error}")

        error_details = (
            f"Gateway reachable but no matching tool or HTTP endpoint responded for {kind}"
            if responded
            else f"Gateway did not respond for {kind}"
        )
        return DatasetResult(
            kind, False, responded, "none", [], trail.lines(), error_details=error_details
        )
