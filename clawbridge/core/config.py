"""Settings loaded from the process environment (and ``.env``).

Only entry points read the environment. Library code receives the resulting
ConnectionConfig / CliConfig values explicitly.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import load_dotenv

from clawbridge.core.constants import DEFAULT_SESSION_KEY, DEFAULT_TIMEOUT_MS
from clawbridge.core.types import ConnectionConfig
from clawbridge.transports.cli_adapter import CliConfig


@dataclass(frozen=True)
class Settings:
    gateway_url: str | None = None
    gateway_token: str | None = None
    gateway_password: str | None = None
    session_key: str = DEFAULT_SESSION_KEY
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    cli_executable: str | None = None
    cli_workspace: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ`` after loading ``.env``)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        def _get(name: str) -> str | None:
            value = environ.get(name, "").strip()
            return value or None

        timeout_raw = _get("OPENCLAW_GATEWAY_TIMEOUT_MS")
        try:
            timeout_ms = int(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_MS
        except ValueError:
            raise ValueError(
                f"OPENCLAW_GATEWAY_TIMEOUT_MS must be an integer, got {timeout_raw!r}"
            ) from None
        if timeout_ms <= 0:
            raise ValueError("OPENCLAW_GATEWAY_TIMEOUT_MS must be positive")

        return cls(
            gateway_url=_get("OPENCLAW_GATEWAY_URL"),
            gateway_token=_get("OPENCLAW_GATEWAY_TOKEN"),
            gateway_password=_get("OPENCLAW_GATEWAY_PASSWORD"),
            session_key=_get("OPENCLAW_SESSION_KEY") or DEFAULT_SESSION_KEY,
            timeout_ms=timeout_ms,
            cli_executable=_get("OPENCLAW_CLI_BIN"),
            cli_workspace=_get("OPENCLAW_CLI_WORKSPACE"),
        )

    def connection_config(
        self, server_url: str | None = None, token: str | None = None
    ) -> ConnectionConfig:
        """Explicit arguments win over environment values."""
        resolved_url = server_url or self.gateway_url
        resolved_token = token or self.gateway_token
        if not resolved_url:
            raise ValueError("Gateway URL is required (argument or OPENCLAW_GATEWAY_URL)")
        if not resolved_token:
            raise ValueError("Gateway token is required (argument or OPENCLAW_GATEWAY_TOKEN)")
        return ConnectionConfig(
            server_url=resolved_url,
            token=resolved_token,
            password=self.gateway_password,
            session_key=self.session_key,
            timeout_ms=self.timeout_ms,
        )

    def cli_config(self) -> CliConfig:
        return CliConfig(executable=self.cli_executable, workspace_dir=self.cli_workspace)
