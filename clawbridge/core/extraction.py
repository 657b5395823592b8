"""Shape normalization for untyped gateway payloads.

Gateways do not agree on envelopes or collection key names, so every "list X"
style query goes through the same ordered extraction strategy instead of
special-casing each endpoint.
"""

import json
import re
from typing import Any, cast

from clawbridge.core.constants import DATASET_KEYS, DATASET_NESTING_KEYS
from clawbridge.core.types import GatewayAgent, GatewayChannel, GatewayInfo

_HTML_PREFIX_RE = re.compile(r"^\s*(<!doctype html|<html)", re.IGNORECASE)
_HTML_VERSION_RE = re.compile(r"version[\"']?\s*[:=]\s*[\"']?([\w.\-]+)", re.IGNORECASE)


def parse_json_safely(text: str | None) -> Any | None:
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def looks_like_html(text: str, content_type: str = "") -> bool:
    return "text/html" in content_type.lower() or bool(_HTML_PREFIX_RE.match(text or ""))


def scrape_version(html: str) -> str | None:
    """Pull a version string out of an HTML page (e.g. a bundled UI config)."""
    match = _HTML_VERSION_RE.search(html or "")
    return match.group(1) if match else None


def _first_text_block(content: Any) -> str | None:
    if not isinstance(content, list):
        return None
    for entry in cast(list[Any], content):
        if isinstance(entry, dict) and entry.get("type") == "text":
            text = entry.get("text")
            if isinstance(text, str) and text:
                return text
    return None


def unwrap_tool_result(payload: Any) -> Any:
    """Unwrap a ``/tools/invoke`` envelope.

    ``{ok: true, result: {content: [{type: "text", text}]}}`` yields the parsed
    text block; ``{ok: true, result}`` yields ``result``; anything else passes
    through untouched.
    """
    if not isinstance(payload, dict) or payload.get("ok") is not True:
        return payload
    if "result" not in payload:
        return payload
    result = payload["result"]
    if isinstance(result, dict):
        text = _first_text_block(result.get("content"))
        if text is not None:
            parsed = parse_json_safely(text)
            return parsed if parsed is not None else result
    return result


def unwrap_socket_payload(payload: Any) -> Any:
    """Socket tool payloads may carry the same content envelope as HTTP results."""
    if isinstance(payload, dict) and isinstance(payload.get("content"), list):
        text = _first_text_block(payload["content"])
        if text is not None:
            parsed = parse_json_safely(text)
            if parsed is not None:
                return parsed
    return unwrap_tool_result(payload)


def extract_dataset(payload: Any, keys: list[str] | None = None) -> list[Any]:
    """Return the first array found in ``payload``.

    Already-list payloads are returned as is; otherwise each known collection
    key is checked at the top level and one level down under ``result``,
    ``payload`` and ``data``.
    """
    if isinstance(payload, list):
        return cast(list[Any], payload)
    if not isinstance(payload, dict):
        return []

    for key in keys or DATASET_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return cast(list[Any], value)
        for nesting_key in DATASET_NESTING_KEYS:
            nested = payload.get(nesting_key)
            if isinstance(nested, dict) and isinstance(nested.get(key), list):
                return cast(list[Any], nested[key])
    return []


def _first_str(record: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def normalize_agents(items: list[Any]) -> list[GatewayAgent]:
    agents: list[GatewayAgent] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        record = cast(dict[str, Any], item)
        agents.append(
            GatewayAgent(
                id=_first_str(record, "id", "agentId", "name") or "unknown",
                name=_first_str(record, "name", "id", "agentId") or "Unknown Agent",
                status=_first_str(record, "status") or "unknown",
                model=_first_str(record, "model"),
                workspace=_first_str(record, "workspace"),
            )
        )
    return agents


def _channel_from_record(record: dict[str, Any]) -> GatewayChannel:
    return GatewayChannel(
        type=_first_str(record, "type", "platform", "channel") or "unknown",
        name=_first_str(record, "name", "id", "type") or "Unknown",
        status=_first_str(record, "status") or "unknown",
        id=_first_str(record, "id"),
    )


def normalize_channels(payload: Any) -> list[GatewayChannel]:
    """Channels arrive either as a list or as a mapping keyed by channel type."""
    listed = extract_dataset(payload, ["channels", "items", "data"])
    if listed:
        return [_channel_from_record(cast(dict[str, Any], c)) for c in listed if isinstance(c, dict)]

    if not isinstance(payload, dict):
        return []
    source = payload.get("channels") if isinstance(payload.get("channels"), dict) else payload
    channels: list[GatewayChannel] = []
    for key, value in cast(dict[str, Any], source).items():
        if key == "type" or not isinstance(value, dict):
            continue
        record = cast(dict[str, Any], value)
        channels.append(
            GatewayChannel(
                type=str(key),
                name=_first_str(record, "name", "id") or str(key),
                status=_first_str(record, "status") or "unknown",
                id=_first_str(record, "id"),
            )
        )
    return channels


def apply_status(info: GatewayInfo, status: Any) -> list[str]:
    """Merge a ``status`` payload into ``info``; returns notes for the diagnostics trail."""
    notes: list[str] = []
    if not isinstance(status, dict):
        return notes
    gateway = status.get("gateway") if isinstance(status.get("gateway"), dict) else {}
    server = status.get("server") if isinstance(status.get("server"), dict) else {}
    data = status.get("data") if isinstance(status.get("data"), dict) else {}

    for candidate in (status.get("version"), gateway.get("version"), server.get("version"), data.get("version")):
        if isinstance(candidate, (str, int, float)) and str(candidate) and str(candidate) != "unknown":
            info.version = str(candidate)
            notes.append(f"Found version: {info.version}")
            break

    uptime = status.get("uptime") or gateway.get("uptime") or server.get("uptime")
    if uptime:
        info.uptime = str(uptime)

    config = status.get("config") or gateway.get("config") or status.get("data")
    if isinstance(config, dict):
        notes.extend(apply_config(info, config))
    return notes


def apply_config(info: GatewayInfo, config: Any) -> list[str]:
    notes: list[str] = []
    if not isinstance(config, dict):
        return notes
    info.config = cast(dict[str, Any], config)
    model = config.get("model") or config.get("defaultModel")
    if model:
        info.model = str(model)
        notes.append(f"Found model: {info.model}")
    provider = config.get("provider")
    if provider:
        info.provider = str(provider)
        notes.append(f"Found provider: {info.provider}")
    return notes


def parse_agent_id(payload: Any) -> str | None:
    """Find a created agent id in the common response shapes."""
    if not isinstance(payload, dict):
        return None
    agent = payload.get("agent") if isinstance(payload.get("agent"), dict) else {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
    for value in (payload.get("agentId"), agent.get("id"), payload.get("id"), data.get("id"), result.get("id")):
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
