"""
Command-line entry point for gateway discovery and troubleshooting.

Credentials come from ``--url``/``--token`` or from the environment
(``OPENCLAW_GATEWAY_URL``, ``OPENCLAW_GATEWAY_TOKEN``; a ``.env`` file is loaded).
Every command prints its result as JSON.
"""

import argparse
import json
import logging
import sys
from typing import Any

from clawbridge.bridge import GatewayBridge
from clawbridge.core.config import Settings
from clawbridge.datasets import DATASET_PRESETS, fetch_named_dataset
from clawbridge.diagnostic import run_full_diagnostic
from clawbridge.discovery import check_gateway_connection, discover_gateway_info
from clawbridge.logger.trace_logger import TraceLogger
from clawbridge.transports.cli_adapter import CliAdapter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawbridge",
        description="Discover and query an agent gateway over socket, HTTP or the local CLI",
    )
    parser.add_argument("--url", help="Gateway URL (ws://, wss://, http:// or https://)")
    parser.add_argument("--token", help="Gateway token (a leading 'Bearer ' is ignored)")
    parser.add_argument("--log-dir", help="Append a JSON-lines trace of each call to this directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every diagnostic step")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("discover", help="Discover gateway version, agents and channels")
    commands.add_parser("test", help="Tri-outcome connectivity check")
    diagnose = commands.add_parser("diagnose", help="Narrated socket handshake and HTTP probe")
    diagnose.add_argument("--timeout", type=float, default=10.0, help="Overall timeout in seconds")
    commands.add_parser("agents", help="List agents through the fallback cascade")

    create = commands.add_parser("create-agent", help="Create an agent (tools first, then the CLI)")
    create.add_argument("name")
    create.add_argument("--model")
    create.add_argument("--emoji")
    create.add_argument("--avatar")
    create.add_argument("--workspace", help="Workspace directory for the CLI fallback")

    dataset = commands.add_parser("dataset", help="Fetch a named dataset")
    dataset.add_argument("kind", choices=sorted(DATASET_PRESETS))
    return parser


def run_command(args: argparse.Namespace, settings: Settings) -> tuple[str, dict[str, Any], Any]:
    """Run the selected command; returns (operation, arguments, result)."""
    config = settings.connection_config(args.url, args.token)

    if args.command == "discover":
        return "discover", {"config": config}, discover_gateway_info(config)
    if args.command == "test":
        return "test", {"config": config}, check_gateway_connection(config)
    if args.command == "diagnose":
        report = run_full_diagnostic(config.ws_url, config.bearer_token, timeout=args.timeout)
        return "diagnose", {"config": config, "timeout": args.timeout}, report

    bridge = GatewayBridge(config, cli=CliAdapter(settings.cli_config()))
    if args.command == "agents":
        return "agents", {"config": config}, bridge.probe_agents()
    if args.command == "create-agent":
        agent_args = {
            key: value
            for key, value in {
                "name": args.name,
                "model": args.model,
                "emoji": args.emoji,
                "avatar": args.avatar,
                "workspaceDir": args.workspace,
            }.items()
            if value
        }
        return "create-agent", {"config": config, **agent_args}, bridge.create_agent(agent_args)
    return "dataset", {"config": config, "kind": args.kind}, fetch_named_dataset(bridge, args.kind)


def _succeeded(result: Any) -> bool:
    data = result.to_dict()
    if "success" in data:
        return bool(data["success"])
    if "created" in data:
        return bool(data["created"])
    if "websocket" in data:
        return result.handshake_succeeded
    return not data.get("error")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = Settings.from_env()
        operation, arguments, result = run_command(args, settings)
    except ValueError as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return 2

    if args.log_dir:
        TraceLogger(args.log_dir, file_name=operation.replace("-", "_")).log(operation, arguments, result)

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if _succeeded(result) else 1


if __name__ == "__main__":
    sys.exit(main())
