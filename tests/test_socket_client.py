import asyncio

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import InvalidStatus
from websockets.http11 import Response

from clawbridge.core.errors import (
    AuthenticationFailure,
    EndpointNotFound,
    ExhaustedFallback,
    OriginRejected,
    TransportUnavailable,
)
from clawbridge.core.types import AuthState, ConnectionConfig, Diagnostics
from clawbridge.transports.socket_client import (
    GatewaySocketSession,
    invoke_via_socket_any,
    query_gateway_info_via_socket,
    test_socket_connectivity,
)
from fake_gateway import FakeConnector, FakeWebSocket, refused_connector, scripted_gateway

CONFIG = ConnectionConfig(server_url="http://127.0.0.1:18789/", token="Bearer secret-token", timeout_ms=2000)


def _session(connector: FakeConnector, **kwargs) -> GatewaySocketSession:
    return GatewaySocketSession(CONFIG, Diagnostics(), connector=connector, **kwargs)


class TestHandshake:
    def test_challenge_then_ok_then_status(self) -> None:
        connector = scripted_gateway({"status": {"version": "2.1.0"}})

        async def run():
            async with _session(connector) as session:
                assert session.state is AuthState.AUTHENTICATED
                return await session.request("status")

        assert asyncio.run(run()) == {"version": "2.1.0"}

        ws = connector.sockets[0]
        assert ws.sent_methods() == ["connect", "status"]
        connect = ws.sent[0]
        assert connect["params"]["minProtocol"] == 3
        assert connect["params"]["maxProtocol"] == 3
        assert connect["params"]["auth"] == {"token": "secret-token"}
        assert connect["params"]["role"] == "operator"
        assert ws.sent[0]["id"] != ws.sent[1]["id"]
        assert ws.closed

    def test_connect_url_uses_ws_scheme_and_cleaned_token(self) -> None:
        connector = scripted_gateway({})

        async def run():
            async with _session(connector):
                pass

        asyncio.run(run())
        assert connector.urls == ["ws://127.0.0.1:18789?token=secret-token"]

    def test_password_is_sent_in_connect_auth(self) -> None:
        connector = scripted_gateway({})
        config = ConnectionConfig(server_url="ws://gw", token="t", password="pw", timeout_ms=2000)

        async def run():
            async with GatewaySocketSession(config, connector=connector):
                pass

        asyncio.run(run())
        assert connector.sockets[0].sent[0]["params"]["auth"] == {"token": "t", "password": "pw"}

    def test_connect_ready_without_challenge_authenticates(self) -> None:
        connector = scripted_gateway({"status": {}}, challenge=False, auth="ready")

        async def run():
            async with _session(connector) as session:
                await session.request("status")

        asyncio.run(run())
        assert connector.sockets[0].sent_methods() == ["status"]

    def test_generic_ok_response_before_auth_is_accepted(self) -> None:
        connector = scripted_gateway(
            {},
            challenge=False,
            auth="silent",
            opening_frames=[{"type": "res", "id": "unsolicited", "ok": True}],
        )
        diagnostics = Diagnostics()

        async def run():
            async with GatewaySocketSession(CONFIG, diagnostics, connector=connector) as session:
                return session.state

        assert asyncio.run(run()) is AuthState.AUTHENTICATED
        assert "[WS] accepted generic successful response as auth success" in diagnostics

    def test_repeated_challenge_sends_single_connect(self) -> None:
        connector = scripted_gateway(
            {},
            opening_frames=[{"type": "event", "event": "connect.challenge", "payload": {}}],
        )
        diagnostics = Diagnostics()

        async def run():
            async with GatewaySocketSession(CONFIG, diagnostics, connector=connector):
                pass

        asyncio.run(run())
        assert connector.sockets[0].sent_methods().count("connect") == 1
        assert "[WS] ignoring repeated connect.challenge" in diagnostics

    def test_ready_after_auth_is_a_no_op(self) -> None:
        connector = scripted_gateway(
            {"status": {"ok": 1}},
            opening_frames=[],
        )

        async def run():
            async with _session(connector) as session:
                session._mark_authenticated("again")
                assert session.state is AuthState.AUTHENTICATED
                return await session.request("status")

        assert asyncio.run(run()) == {"ok": 1}


class TestHandshakeFailures:
    def test_rejected_connect_raises_authentication_failure(self) -> None:
        connector = scripted_gateway({}, auth="reject")
        session = _session(connector)

        with pytest.raises(AuthenticationFailure, match="invalid token"):
            asyncio.run(session.open())
        assert session.state is AuthState.CLOSED_ERROR
        assert connector.sockets[0].closed

    def test_clean_close_after_rejection_keeps_error_state(self) -> None:
        connector = scripted_gateway({}, auth="reject-close")
        session = _session(connector)

        with pytest.raises(AuthenticationFailure, match="invalid token"):
            asyncio.run(session.open())
        assert session.state is AuthState.CLOSED_ERROR

    def test_malformed_port_is_transport_unavailable(self) -> None:
        session = _session(FakeConnector(error=ValueError("Port out of range 0-65535")))

        with pytest.raises(TransportUnavailable, match="Invalid gateway URL"):
            asyncio.run(session.open())
        assert session.state is AuthState.CLOSED_ERROR

    def test_origin_rejection_is_soft_and_recommends_http(self) -> None:
        connector = scripted_gateway({}, auth="origin")
        diagnostics = Diagnostics()
        session = GatewaySocketSession(CONFIG, diagnostics, connector=connector)

        with pytest.raises(OriginRejected) as excinfo:
            asyncio.run(session.open())
        assert isinstance(excinfo.value, TransportUnavailable)
        assert any("/tools/invoke" in line for line in diagnostics)

    def test_close_before_auth_raises_transport_unavailable(self) -> None:
        connector = scripted_gateway({}, auth="close")

        with pytest.raises(TransportUnavailable, match="code: 1008"):
            asyncio.run(_session(connector).open())

    def test_refused_connection(self) -> None:
        with pytest.raises(TransportUnavailable, match="Connection refused"):
            asyncio.run(_session(refused_connector()).open())

    def test_http_401_on_upgrade_is_authentication_failure(self) -> None:
        error = InvalidStatus(Response(401, "Unauthorized", Headers()))

        with pytest.raises(AuthenticationFailure) as excinfo:
            asyncio.run(_session(FakeConnector(error=error)).open())
        assert excinfo.value.status == 401

    def test_silent_gateway_times_out(self) -> None:
        connector = scripted_gateway({}, challenge=False, auth="silent")
        config = CONFIG.with_timeout(50)

        with pytest.raises(TransportUnavailable, match="timeout after 50ms"):
            asyncio.run(GatewaySocketSession(config, connector=connector).open())
        assert connector.sockets[0].closed


class TestRequests:
    def test_request_before_auth_is_refused(self) -> None:
        session = _session(scripted_gateway({}))

        with pytest.raises(TransportUnavailable, match="not connected"):
            asyncio.run(session.request("status"))

    def test_only_kth_candidate_succeeds(self) -> None:
        connector = scripted_gateway({"channels_status": {"channels": []}})
        diagnostics = Diagnostics()

        method, payload = invoke_via_socket_any(
            CONFIG,
            ["channels.status", "channels.list", "channels_status", "channels_list"],
            diagnostics=diagnostics,
            connector=connector,
        )

        assert method == "channels_status"
        assert payload == {"channels": []}
        assert connector.sockets[0].sent_methods() == [
            "connect",
            "channels.status",
            "channels.list",
            "channels_status",
        ]
        assert "[WS] channels.status failed: unknown method: channels.status (NOT_FOUND)" in diagnostics

    def test_all_candidates_fail(self) -> None:
        with pytest.raises(ExhaustedFallback) as excinfo:
            invoke_via_socket_any(CONFIG, ["a", "b"], connector=scripted_gateway({}))
        assert len(excinfo.value.errors) == 2
        assert isinstance(excinfo.value.last_error, EndpointNotFound)

    def test_request_timeout_is_per_request(self) -> None:
        connector = scripted_gateway({"status": {}}, hang=("slow",))

        async def run():
            async with _session(connector, request_timeout=0.05) as session:
                with pytest.raises(TransportUnavailable, match="Request timeout for slow"):
                    await session.request("slow")
                return await session.request("status")

        assert asyncio.run(run()) == {}

    def test_explicit_zero_timeout_is_honoured(self) -> None:
        connector = scripted_gateway({}, hang=("slow",))

        async def run():
            async with _session(connector, request_timeout=30.0) as session:
                started = asyncio.get_running_loop().time()
                with pytest.raises(TransportUnavailable, match="Request timeout for slow"):
                    await session.request("slow", timeout=0)
                return asyncio.get_running_loop().time() - started

        assert asyncio.run(run()) < 1.0

    def test_request_ids_are_never_reused(self) -> None:
        connector = scripted_gateway({"status": {}})

        async def run():
            async with _session(connector) as session:
                for _ in range(3):
                    await session.request("status")

        asyncio.run(run())
        ids = [frame["id"] for frame in connector.sockets[0].sent]
        assert len(ids) == len(set(ids)) == 4

    def test_pending_requests_fail_when_server_closes(self) -> None:
        def factory() -> FakeWebSocket:
            def handle(ws: FakeWebSocket, frame: dict) -> None:
                if frame["method"] == "connect":
                    ws.push({"type": "res", "id": frame["id"], "ok": True})
                else:
                    ws.push_close(1011, "server error")

            ws = FakeWebSocket(handle)
            ws.push({"type": "event", "event": "connect.challenge"})
            return ws

        async def run():
            async with _session(FakeConnector(factory), request_timeout=2.0) as session:
                with pytest.raises(TransportUnavailable, match="code: 1011"):
                    await session.request("status")
                return session.state

        assert asyncio.run(run()) is AuthState.CLOSED_ERROR


class TestGatewayInfoViaSocket:
    def test_merges_status_agents_and_channels(self) -> None:
        connector = scripted_gateway(
            {
                "status": {"version": "1.4.2", "uptime": "3h", "config": {"model": "claude", "provider": "anthropic"}},
                "agents_list": {"agents": [{"id": "main", "name": "Main"}]},
                "channels.status": {"telegram": {"status": "connected"}},
            }
        )

        info = query_gateway_info_via_socket(CONFIG, connector=connector)

        assert info.version == "1.4.2"
        assert info.model == "claude"
        assert info.agent_count == 1
        assert info.channels[0].type == "telegram"
        assert "config.get" not in connector.sockets[0].sent_methods()
        assert info.diagnostics[0].startswith("[WS] Connecting to ws://")

    def test_auth_failure_carries_diagnostics(self) -> None:
        with pytest.raises(AuthenticationFailure) as excinfo:
            query_gateway_info_via_socket(CONFIG, connector=scripted_gateway({}, auth="reject"))
        assert any("auth rejected" in line for line in excinfo.value.diagnostics)

    def test_connectivity_result_shapes(self) -> None:
        ok = test_socket_connectivity(CONFIG, connector=scripted_gateway({"status": {"version": "9"}}))
        rejected = test_socket_connectivity(CONFIG, connector=scripted_gateway({}, auth="reject"))
        origin = test_socket_connectivity(CONFIG, connector=scripted_gateway({}, auth="origin"))
        down = test_socket_connectivity(CONFIG, connector=refused_connector())

        assert (ok.success, ok.connected, ok.version) == (True, True, "9")
        assert (rejected.success, rejected.connected) == (False, False)
        assert (origin.success, origin.connected) == (False, True)
        assert (down.success, down.connected) == (False, False)
