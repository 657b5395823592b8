import json
import os

from clawbridge.core.types import ConnectionConfig, ConnectivityResult
from clawbridge.logger.trace_logger import TraceLogger, redact


class TestRedact:
    def test_secrets_are_replaced_by_length(self) -> None:
        redacted = redact(
            {
                "token": "abcdef",
                "nested": {"Authorization": "Bearer x", "password": "pw"},
                "kind": "skills",
            }
        )

        assert redacted == {
            "token": "<redacted:6>",
            "nested": {"Authorization": "<redacted:8>", "password": "<redacted:2>"},
            "kind": "skills",
        }

    def test_connection_config_is_serialized_without_token(self) -> None:
        config = ConnectionConfig(server_url="ws://gw", token="Bearer secret")
        redacted = redact({"config": config})

        assert redacted["config"]["serverUrl"] == "ws://gw"
        assert "secret" not in json.dumps(redacted)


class TestTraceLogger:
    def test_writes_one_json_line_per_call(self, tmp_path) -> None:
        logger = TraceLogger(str(tmp_path / "logs"), file_name="discover")
        config = ConnectionConfig(server_url="ws://gw", token="secret")

        logger.log("test", {"config": config}, ConnectivityResult(success=True, connected=True, message="ok"))
        logger.log("test", {"token": "secret"}, {"raw": True})

        assert logger.call_count == 2
        assert os.path.basename(logger.log_file_path).startswith("discover_")
        with open(logger.log_file_path) as f:
            entries = [json.loads(line) for line in f]

        assert [entry["call"] for entry in entries] == [1, 2]
        assert entries[0]["operation"] == "test"
        assert entries[0]["result"]["success"] is True
        assert entries[1]["arguments"] == {"token": "<redacted:6>"}
        assert entries[1]["result"] == {"raw": True}
        assert "secret" not in open(logger.log_file_path).read()
