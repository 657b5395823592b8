"""
Logger for gateway calls.

Writes one JSON line per logical call (operation, redacted arguments, result)
for later analysis and debugging.
"""

from datetime import datetime
import json
import os
import uuid
from typing import Any

from clawbridge.core.types import ConnectionConfig

_SECRET_KEYS = {"token", "password", "authorization"}


def redact(arguments: dict[str, Any]) -> dict[str, Any]:
    """Replace secret values with their length so logs never carry credentials."""
    redacted: dict[str, Any] = {}
    for key, value in arguments.items():
        if isinstance(value, ConnectionConfig):
            redacted[key] = value.to_dict()
        elif key.lower() in _SECRET_KEYS and isinstance(value, str):
            redacted[key] = f"<redacted:{len(value)}>"
        elif isinstance(value, dict):
            redacted[key] = redact(value)
        else:
            redacted[key] = value
    return redacted


class TraceLogger:
    """Logger that writes gateway call results to a JSON-lines file."""

    def __init__(self, log_dir: str, file_name: str = "clawbridge"):
        self.log_dir = log_dir
        os.makedirs(log_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        run_id = str(uuid.uuid4())[:8]
        self.log_file_path = os.path.join(log_dir, f"{file_name}_{timestamp}_{run_id}.jsonl")

        self._call_count = 0

    def log(self, operation: str, arguments: dict[str, Any], result: Any):
        """Append one call record; ``result`` may be a dict or anything with ``to_dict()``."""
        self._call_count += 1

        entry = {
            "call": self._call_count,
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "arguments": redact(arguments),
            "result": result.to_dict() if hasattr(result, "to_dict") else result,
        }

        with open(self.log_file_path, "a") as f:
            json.dump(entry, f, default=str)
            f.write("\n")

    @property
    def call_count(self) -> int:
        return self._call_count
