import json
from unittest.mock import patch

from clawbridge import cli
from clawbridge.core.config import Settings
from clawbridge.core.types import AgentsProbeResult, ConnectivityResult, DatasetResult

ENV = {"OPENCLAW_GATEWAY_URL": "ws://127.0.0.1:18789", "OPENCLAW_GATEWAY_TOKEN": "tok"}


def _run(argv: list[str], capsys) -> tuple[int, dict]:
    with patch.object(Settings, "from_env", return_value=Settings.from_env(ENV)):
        code = cli.main(argv)
    return code, json.loads(capsys.readouterr().out)


class TestCli:
    def test_test_command(self, capsys) -> None:
        result = ConnectivityResult(success=True, connected=True, message="Connected to gateway v1", version="1")
        with patch("clawbridge.cli.check_gateway_connection", return_value=result) as mock_check:
            code, output = _run(["test"], capsys)

        assert code == 0
        assert output["message"] == "Connected to gateway v1"
        config = mock_check.call_args.args[0]
        assert (config.server_url, config.bearer_token) == ("ws://127.0.0.1:18789", "tok")

    def test_explicit_url_and_token(self, capsys) -> None:
        result = ConnectivityResult(success=False, connected=False, message="down")
        with patch("clawbridge.cli.check_gateway_connection", return_value=result) as mock_check:
            code, _ = _run(["--url", "http://other:1", "--token", "Bearer t2", "test"], capsys)

        assert code == 1
        assert mock_check.call_args.args[0].bearer_token == "t2"

    def test_dataset_command(self, capsys) -> None:
        result = DatasetResult(kind="skills", success=True, connected=True, source="cli", items=[{"name": "x"}])
        with patch("clawbridge.cli.fetch_named_dataset", return_value=result) as mock_fetch:
            code, output = _run(["dataset", "skills"], capsys)

        assert code == 0
        assert (output["source"], output["count"]) == ("cli", 1)
        bridge, kind = mock_fetch.call_args.args
        assert kind == "skills"
        assert bridge.cli is not None

    def test_create_agent_passes_only_given_fields(self) -> None:
        args = cli.build_parser().parse_args(["create-agent", "ops", "--model", "sonnet"])
        with patch("clawbridge.cli.GatewayBridge") as mock_bridge:
            cli.run_command(args, Settings.from_env(ENV))

        mock_bridge.return_value.create_agent.assert_called_once_with({"name": "ops", "model": "sonnet"})

    def test_missing_credentials(self, capsys) -> None:
        with patch.object(Settings, "from_env", return_value=Settings()):
            code = cli.main(["agents"])

        assert code == 2
        assert "Gateway URL is required" in json.loads(capsys.readouterr().out)["error"]

    def test_trace_log(self, tmp_path, capsys) -> None:
        result = AgentsProbeResult(success=True, connected=True, agents=[{"id": "a"}])
        with patch("clawbridge.cli.GatewayBridge") as mock_bridge:
            mock_bridge.return_value.probe_agents.return_value = result
            code, _ = _run(["--log-dir", str(tmp_path), "agents"], capsys)

        assert code == 0
        (log_file,) = tmp_path.iterdir()
        entry = json.loads(log_file.read_text())
        assert entry["operation"] == "agents"
        assert entry["arguments"]["config"]["tokenLength"] == 3
