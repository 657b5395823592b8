from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from clawbridge.core.constants import DEFAULT_SESSION_KEY, DEFAULT_TIMEOUT_MS
from clawbridge.core.urls import clean_token, convert_http_to_ws, normalize_http_url

DatasetSource = Literal["tool", "http", "cli", "none"]
JsonDict = dict[str, Any]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _drop_none(data: JsonDict) -> JsonDict:
    return {key: value for key, value in data.items() if value is not None}


########################################################
########   Connection configuration              #########
########################################################


@dataclass(frozen=True)
class ConnectionConfig:
    """Credentials and target for one logical call.

    Passed by value into every operation; nothing caches it between calls.
    """

    server_url: str
    token: str
    password: str | None = None
    session_key: str = DEFAULT_SESSION_KEY
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def bearer_token(self) -> str:
        return clean_token(self.token)

    @property
    def http_url(self) -> str:
        return normalize_http_url(self.server_url)

    @property
    def ws_url(self) -> str:
        return convert_http_to_ws(self.server_url)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def with_timeout(self, timeout_ms: int) -> ConnectionConfig:
        return replace(self, timeout_ms=timeout_ms)

    def to_dict(self) -> JsonDict:
        """Serialize for logs; the token and password are redacted."""
        return {
            "serverUrl": self.server_url,
            "tokenLength": len(self.bearer_token),
            "hasPassword": bool(self.password),
            "sessionKey": self.session_key,
            "timeoutMs": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: JsonDict) -> ConnectionConfig:
        server_url = data.get("serverUrl") or data.get("server_url")
        token = data.get("token")
        if not isinstance(server_url, str) or not server_url.strip():
            raise ValueError("Server URL is required")
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Gateway token is required")
        password = data.get("password")
        session_key = data.get("sessionKey") or data.get("session_key") or DEFAULT_SESSION_KEY
        timeout_raw = data.get("timeoutMs") or data.get("timeout_ms") or DEFAULT_TIMEOUT_MS
        return cls(
            server_url=server_url.strip(),
            token=token,
            password=password if isinstance(password, str) and password else None,
            session_key=str(session_key),
            timeout_ms=int(timeout_raw),
        )


########################################################
########   Diagnostics trail                     #########
########################################################


class Diagnostics:
    """Append-only, chronologically ordered trace of one logical call.

    Each line is mirrored to ``logger`` at DEBUG so library users can follow a
    call through standard logging as well.
    """

    def __init__(
        self, lines: Iterable[str] | None = None, logger: logging.Logger | None = None
    ) -> None:
        self._lines: list[str] = list(lines or [])
        self._logger = logger or logging.getLogger("clawbridge")

    def append(self, line: str) -> None:
        self._lines.append(line)
        self._logger.debug(line)

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def lines(self) -> list[str]:
        return list(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._lines))

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line: object) -> bool:
        return line in self._lines

    def __repr__(self) -> str:
        return f"Diagnostics({self._lines!r})"


########################################################
########   Gateway result model                  #########
########################################################


class AuthState(str, Enum):
    CONNECTING = "connecting"
    AWAITING = "awaiting-challenge-or-ready"
    AUTHENTICATED = "authenticated"
    CLOSED_ERROR = "closed-error"
    CLOSED_OK = "closed-ok"

    @property
    def is_closed(self) -> bool:
        return self in (AuthState.CLOSED_ERROR, AuthState.CLOSED_OK)


@dataclass
class GatewayAgent:
    id: str
    name: str
    status: str = "unknown"
    model: str | None = None
    workspace: str | None = None

    def to_dict(self) -> JsonDict:
        return _drop_none(
            {
                "id": self.id,
                "name": self.name,
                "status": self.status,
                "model": self.model,
                "workspace": self.workspace,
            }
        )


@dataclass
class GatewayChannel:
    type: str
    name: str
    status: str = "unknown"
    id: str | None = None

    def to_dict(self) -> JsonDict:
        return _drop_none(
            {"type": self.type, "name": self.name, "status": self.status, "id": self.id}
        )


@dataclass
class GatewayInfo:
    """What discovery learned about a gateway; always returned, never raised."""

    version: str = "unknown"
    uptime: str | None = None
    model: str | None = None
    provider: str | None = None
    agents: list[GatewayAgent] = field(default_factory=list)
    agent_count: int | None = None
    channels: list[GatewayChannel] = field(default_factory=list)
    channel_count: int | None = None
    config: JsonDict | None = None
    error: str | None = None
    error_details: str | None = None
    diagnostics: list[str] = field(default_factory=list)

    @property
    def has_strong_signal(self) -> bool:
        return (
            self.version != "unknown"
            or bool(self.uptime)
            or bool(self.model)
            or bool(self.provider)
            or (self.agent_count or 0) > 0
            or (self.channel_count or 0) > 0
        )

    def to_dict(self) -> JsonDict:
        data: JsonDict = {
            "version": self.version,
            "uptime": self.uptime,
            "model": self.model,
            "provider": self.provider,
            "agents": [agent.to_dict() for agent in self.agents] if self.agents else None,
            "agentCount": self.agent_count,
            "channels": [channel.to_dict() for channel in self.channels]
            if self.channels
            else None,
            "channelCount": self.channel_count,
            "config": self.config,
            "error": self.error,
            "errorDetails": self.error_details,
        }
        data = _drop_none(data)
        data["diagnostics"] = list(self.diagnostics)
        return data


@dataclass
class DatasetResult:
    kind: str
    success: bool = False
    connected: bool = False
    source: DatasetSource = "none"
    items: list[Any] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    error_details: str | None = None
    timestamp: str = field(default_factory=_utc_timestamp)

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> JsonDict:
        return {
            "success": self.success,
            "connected": self.connected,
            "source": self.source,
            "kind": self.kind,
            "items": list(self.items),
            "count": self.count,
            "diagnostics": list(self.diagnostics),
            "errorDetails": self.error_details,
            "timestamp": self.timestamp,
        }


@dataclass
class AgentsProbeResult:
    success: bool
    connected: bool
    agents: list[JsonDict] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> JsonDict:
        return {
            "success": self.success,
            "connected": self.connected,
            "agents": list(self.agents),
            "agentCount": len(self.agents),
            "diagnostics": list(self.diagnostics),
            "errorDetails": self.error,
        }


@dataclass
class CreateAgentResult:
    created: bool
    agent_id: str | None = None
    error: str | None = None
    method: Literal["socket", "http", "cli"] | None = None
    diagnostics: list[str] = field(default_factory=list)

    def to_dict(self) -> JsonDict:
        data = _drop_none(
            {
                "created": self.created,
                "agentId": self.agent_id,
                "error": self.error,
                "method": self.method,
            }
        )
        data["diagnostics"] = list(self.diagnostics)
        return data


@dataclass
class ConnectivityResult:
    """Tri-outcome connectivity check.

    success=True implies connected=True; success=False with connected=True means
    the gateway answered but refused or had nothing usable.
    """

    success: bool
    connected: bool
    message: str
    error: str | None = None
    version: str | None = None
    protocol: Literal["socket", "http"] | None = None
    diagnostics: list[str] = field(default_factory=list)

    def to_dict(self) -> JsonDict:
        data = _drop_none(
            {
                "success": self.success,
                "connected": self.connected,
                "message": self.message,
                "error": self.error,
                "version": self.version,
                "protocol": self.protocol,
            }
        )
        data["diagnostics"] = list(self.diagnostics)
        return data
