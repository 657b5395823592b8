from unittest.mock import patch

import pytest
import requests
from websockets.datastructures import Headers
from websockets.exceptions import InvalidStatus
from websockets.http11 import Response

from clawbridge.bridge import AUTH_FAILED_MESSAGE, GatewayBridge, gateway_responded
from clawbridge.core.errors import (
    AuthenticationFailure,
    EndpointNotFound,
    OriginRejected,
    TransportUnavailable,
)
from clawbridge.core.types import ConnectionConfig
from clawbridge.datasets import DATASET_PRESETS, fetch_named_dataset
from clawbridge.transports.cli_adapter import CliAdapter, CliConfig
from fake_gateway import FakeConnector, FakeProcess, http_response, path_router, refused_connector, scripted_gateway, tool_router

CONFIG = ConnectionConfig(server_url="http://127.0.0.1:18789", token="tok")

POST = "clawbridge.transports.http_client.requests.post"
GET = "clawbridge.transports.http_client.requests.get"
POPEN = "clawbridge.transports.cli_adapter.subprocess.Popen"


def _cli() -> CliAdapter:
    return CliAdapter(CliConfig(include_wrappers=False))


def _unauthorized_connector() -> FakeConnector:
    return FakeConnector(error=InvalidStatus(Response(401, "Unauthorized", Headers())))


class TestGatewayResponded:
    def test_classification(self) -> None:
        assert not gateway_responded(TransportUnavailable("refused"))
        assert gateway_responded(OriginRejected("origin not allowed"))
        assert gateway_responded(EndpointNotFound("missing"))


class TestInvokeTool:
    def test_socket_result_is_used_first(self) -> None:
        connector = scripted_gateway({"agents.list": {"content": [{"type": "text", "text": '{"agents": []}'}]}})
        bridge = GatewayBridge(CONFIG, connector=connector)

        with patch(POST) as mock_post:
            source, payload = bridge.invoke_tool_with_source("agents_list")

        assert (source, payload) == ("socket", {"agents": []})
        assert connector.sockets[0].sent_methods() == ["connect", "agents_list", "agents.list"]
        mock_post.assert_not_called()

    def test_falls_back_to_http_with_bridge_timeout(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())

        with patch(POST, side_effect=tool_router({"status": {"version": "1"}})) as mock_post:
            source, payload = bridge.invoke_tool_with_source("status")

        assert (source, payload) == ("http", {"version": "1"})
        assert mock_post.call_args.kwargs["timeout"] == 12.0

    def test_socket_authentication_failure_skips_http(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=_unauthorized_connector())

        with patch(POST) as mock_post:
            with pytest.raises(AuthenticationFailure):
                bridge.invoke_tool("status")
        mock_post.assert_not_called()


class TestFetchDataset:
    def test_tool_stage(self) -> None:
        connector = scripted_gateway({"sessions.list": {"sessions": [{"key": "agent:main:main"}]}})
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=connector)

        result = fetch_named_dataset(bridge, "sessions")

        assert (result.success, result.connected, result.source, result.count) == (True, True, "tool", 1)
        assert "[tool:sessions.list] success (1 items)" in result.diagnostics

    def test_rest_stage_after_tools_are_missing(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=scripted_gateway({}))
        routes = {"/api/session/list": {"sessions": [{"key": "a"}, {"key": "b"}]}}

        with patch(POST, side_effect=tool_router({})), patch(GET, side_effect=path_router(routes)) as mock_get, patch(
            POPEN
        ) as mock_popen:
            result = fetch_named_dataset(bridge, "sessions")

        assert (result.success, result.source, result.count) == (True, "http", 2)
        assert [call.args[0] for call in mock_get.call_args_list] == [
            "http://127.0.0.1:18789/api/sessions",
            "http://127.0.0.1:18789/api/session/list",
        ]
        mock_popen.assert_not_called()

    def test_cli_stage_after_gateway_has_nothing(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=scripted_gateway({}))
        cli_output = FakeProcess('{"jobs": [{"id": "nightly"}]}')

        with patch(POST, side_effect=tool_router({})), patch(GET, side_effect=path_router({})), patch(
            POPEN, return_value=cli_output
        ):
            result = fetch_named_dataset(bridge, "cron_jobs")

        assert (result.success, result.connected, result.source) == (True, True, "cli")
        assert result.items == [{"id": "nightly"}]
        assert "[cli] success (1 items)" in result.diagnostics

    def test_socket_401_skips_http_and_cli(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=_unauthorized_connector())

        with patch(POST) as mock_post, patch(GET) as mock_get, patch(POPEN) as mock_popen:
            result = fetch_named_dataset(bridge, "skills")

        assert (result.success, result.connected, result.source) == (False, False, "none")
        assert result.error_details == AUTH_FAILED_MESSAGE
        mock_post.assert_not_called()
        mock_get.assert_not_called()
        mock_popen.assert_not_called()

    def test_http_401_skips_remaining_stages(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=refused_connector())

        with patch(POST, return_value=http_response(401)) as mock_post, patch(GET) as mock_get, patch(
            POPEN
        ) as mock_popen:
            result = fetch_named_dataset(bridge, "usage")

        assert result.error_details == AUTH_FAILED_MESSAGE
        assert mock_post.call_count == 1
        mock_get.assert_not_called()
        mock_popen.assert_not_called()

    def test_every_stage_failing(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=refused_connector())
        timed_out = requests.Timeout("read timed out")

        with patch(POST, side_effect=timed_out), patch(GET, side_effect=timed_out), patch(
            POPEN, side_effect=FileNotFoundError("openclaw not found")
        ):
            result = fetch_named_dataset(bridge, "sessions")

        assert (result.success, result.connected, result.source, result.count) == (False, False, "none", 0)
        assert result.error_details == "Gateway did not respond for sessions"
        trail = result.diagnostics
        assert "[tool:sessions] trying sessions.list" in trail
        assert "[http:sessions] trying /api/sessions" in trail
        assert "[cli] openclaw failed: openclaw not found" in trail
        assert trail.index("[tool:sessions] trying sessions.list") < trail.index("[http:sessions] trying /api/sessions")

    def test_reachable_but_nothing_matched(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=scripted_gateway({}))

        with patch(POST, side_effect=tool_router({})), patch(GET, side_effect=path_router({})):
            result = fetch_named_dataset(bridge, "workspace_files")

        assert (result.success, result.connected) == (False, True)
        assert result.error_details == (
            "Gateway reachable but no matching tool or HTTP endpoint responded for workspace_files"
        )

    def test_unknown_kind(self) -> None:
        with pytest.raises(KeyError, match="Unknown dataset kind"):
            fetch_named_dataset(GatewayBridge(CONFIG), "weather")

    def test_every_preset_has_candidates(self) -> None:
        for kind, preset in DATASET_PRESETS.items():
            assert preset.kind == kind
            assert preset.tool_candidates and preset.http_candidates


class TestProbeAgents:
    def test_agents_from_socket(self) -> None:
        connector = scripted_gateway({"agents.list": {"agents": [{"id": "main"}, {"id": "ops"}]}})

        result = GatewayBridge(CONFIG, connector=connector).probe_agents()

        assert (result.success, result.connected) == (True, True)
        assert [agent["id"] for agent in result.agents] == ["main", "ops"]

    def test_fetch_agents_list_returns_only_agents(self) -> None:
        connector = scripted_gateway({"agents.list": [{"id": "main"}]})

        assert GatewayBridge(CONFIG, connector=connector).fetch_agents_list() == [{"id": "main"}]

    def test_agents_from_rest_path(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())

        with patch(POST, side_effect=tool_router({})), patch(
            GET, side_effect=path_router({"/agents": [{"id": "main"}]})
        ):
            result = bridge.probe_agents()

        assert result.success
        assert result.agents == [{"id": "main"}]

    def test_capability_missing(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=refused_connector())

        with patch(POST, side_effect=tool_router({})), patch(GET, side_effect=path_router({})):
            result = bridge.probe_agents()

        assert (result.success, result.connected) == (False, True)
        assert "agent list capability is unavailable" in result.error
        assert "[cli] no agent list command available; skipping" in result.diagnostics

    def test_gateway_down(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())
        refused = requests.ConnectionError("refused")

        with patch(POST, side_effect=refused), patch(GET, side_effect=refused):
            result = bridge.probe_agents()

        assert (result.success, result.connected, result.error) == (False, False, "Gateway did not respond")

    def test_authentication_failure(self) -> None:
        result = GatewayBridge(CONFIG, connector=_unauthorized_connector()).probe_agents()

        assert (result.success, result.connected, result.error) == (False, False, AUTH_FAILED_MESSAGE)


class TestCreateAgent:
    def test_first_exposed_creation_tool_wins(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())

        with patch(POST, side_effect=tool_router({"agents_create": {"agentId": "new-agent"}})):
            result = bridge.create_agent({"name": "New Agent"})

        assert (result.created, result.agent_id, result.method) == (True, "new-agent", "http")
        assert "[tool] agents.create unavailable" in result.diagnostics

    def test_socket_creation(self) -> None:
        connector = scripted_gateway({"agents.create": {"agent": {"id": "sock"}}})

        result = GatewayBridge(CONFIG, connector=connector).create_agent({"name": "Sock"})

        assert (result.created, result.agent_id, result.method) == (True, "sock", "socket")

    def test_cli_fallback_when_no_tool_exists(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=refused_connector())
        added = [FakeProcess('{"agentId": "ops"}'), FakeProcess("{}")]

        with patch(POST, side_effect=tool_router({})), patch(POPEN, side_effect=added) as mock_popen:
            result = bridge.create_agent({"name": "ops", "workspaceDir": "/srv/ws"})

        assert (result.created, result.agent_id, result.method) == (True, "ops", "cli")
        assert "/srv/ws" in mock_popen.call_args_list[0].args[0]

    def test_hard_tool_error_stops_tool_loop(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())

        with patch(POST, return_value=http_response(500, {"error": "disk full"})) as mock_post:
            result = bridge.create_agent({"name": "x"})

        assert not result.created
        assert result.error == "disk full"
        assert mock_post.call_count == 1

    def test_errors_are_combined_when_cli_also_fails(self) -> None:
        bridge = GatewayBridge(CONFIG, cli=_cli(), connector=refused_connector())
        failed = FakeProcess(stderr="agent exists", returncode=1)

        with patch(POST, side_effect=tool_router({})), patch(POPEN, return_value=failed):
            result = bridge.create_agent({"name": "ops"})

        assert not result.created
        assert result.error == (
            "Gateway runtime does not expose any agent creation tool (plugin/bridge capability missing); "
            "CLI fallback failed: agent exists"
        )

    def test_authentication_failure(self) -> None:
        bridge = GatewayBridge(CONFIG, connector=refused_connector())

        with patch(POST, return_value=http_response(401)):
            result = bridge.create_agent({"name": "x"})

        assert (result.created, result.error) == (False, AUTH_FAILED_MESSAGE)
