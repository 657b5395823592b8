"""Named dataset presets: which tools, REST paths and CLI command serve each listing."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, cast

from clawbridge.bridge import CliFallback, GatewayBridge
from clawbridge.core.constants import CHANNELS_METHODS
from clawbridge.core.extraction import extract_dataset
from clawbridge.core.types import DatasetResult
from clawbridge.transports.cli_adapter import CliAdapter


def _list_under(key: str) -> Callable[[Any], list[Any]]:
    def extract(payload: Any) -> list[Any]:
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return cast(list[Any], payload[key])
        return payload if isinstance(payload, list) else []

    return extract


def _as_records(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    return [] if payload is None else [payload]


@dataclass(frozen=True)
class DatasetPreset:
    kind: str
    tool_candidates: list[str]
    http_candidates: list[str]
    cli_fallback: CliFallback | None = None
    cli_extract: Callable[[Any], list[Any]] = field(default=extract_dataset)


DATASET_PRESETS: dict[str, DatasetPreset] = {
    preset.kind: preset
    for preset in [
        DatasetPreset(
            "sessions",
            ["sessions.list", "sessions_list", "sessions.history", "sessions_history"],
            ["/api/sessions", "/api/session/list"],
            CliAdapter.sessions,
            _list_under("sessions"),
        ),
        DatasetPreset(
            "chat_messages",
            ["chat.history", "sessions.history", "sessions_history", "messages.list", "messages_list"],
            ["/api/messages", "/api/chat/messages", "/api/tasks/messages"],
        ),
        DatasetPreset(
            "workspace_files",
            ["agents.files.list", "files.list", "files_list", "workspace.files", "workspace_files"],
            ["/api/files", "/api/workspace/files", "/api/workspaces/files"],
        ),
        DatasetPreset(
            "usage",
            ["usage.cost", "usage.stats", "usage_stats", "token_usage", "billing_usage"],
            ["/api/usage", "/api/token-usage", "/api/billing/usage"],
            CliAdapter.usage,
            _list_under("daily"),
        ),
        DatasetPreset(
            "cron_jobs",
            ["cron.list", "cron_list", "jobs.list", "jobs_list"],
            ["/api/cron", "/api/cron/jobs", "/api/jobs"],
            CliAdapter.cron_jobs,
            _list_under("jobs"),
        ),
        DatasetPreset(
            "skills",
            ["skills.status", "skills.list", "skills_list", "installed_skills"],
            ["/api/skills", "/api/installed-skills"],
            CliAdapter.skills,
            _list_under("skills"),
        ),
        DatasetPreset(
            "logs",
            ["logs.tail", "logs_tail", "session.status", "session_status"],
            ["/api/logs", "/api/system/logs"],
            CliAdapter.logs,
            _as_records,
        ),
        DatasetPreset(
            "channels",
            list(CHANNELS_METHODS),
            ["/api/channels", "/api/channel/status"],
            CliAdapter.channels,
            _list_under("channels"),
        ),
    ]
}


def fetch_named_dataset(bridge: GatewayBridge, kind: str) -> DatasetResult:
    """Run the preset registered for ``kind`` through the bridge cascade.

    Raises:
        KeyError: If no preset exists for ``kind``.
    """
    try:
        preset = DATASET_PRESETS[kind]
    except KeyError:
        raise KeyError(
            f"Unknown dataset kind {kind!r}; expected one of {sorted(DATASET_PRESETS)}"
        ) from None
    return bridge.fetch_dataset(
        preset.kind,
        preset.tool_candidates,
        preset.http_candidates,
        cli_fallback=preset.cli_fallback,
        cli_extract=preset.cli_extract,
    )
