"""Adapter for the local ``openclaw`` command-line binary.

Every command is run with ``--json`` and a bounded timeout. The first candidate
executable that exits cleanly and prints parseable JSON wins.
"""

import io
import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from clawbridge.core.constants import (
    CLI_BINARY,
    CLI_DEFAULT_WORKSPACE,
    CLI_MAX_OUTPUT_BYTES,
    CLI_TIMEOUT,
)
from clawbridge.core.errors import (
    ExhaustedFallback,
    GatewayRequestError,
    MalformedResponse,
    describe_error,
)
from clawbridge.core.extraction import parse_agent_id, parse_json_safely
from clawbridge.core.fallback import FallbackChain
from clawbridge.core.types import CreateAgentResult, Diagnostics

_cli_log = logging.getLogger("clawbridge.cli_adapter")

READ_CHUNK_BYTES = 64 * 1024
PIPE_DRAIN_SECONDS = 1.0


@dataclass(frozen=True)
class CliConfig:
    executable: str | None = None
    workspace_dir: str | None = None
    timeout_seconds: float = CLI_TIMEOUT
    max_output_bytes: int = CLI_MAX_OUTPUT_BYTES
    include_wrappers: bool = True

    @property
    def workspace(self) -> str:
        return os.path.expanduser(self.workspace_dir or CLI_DEFAULT_WORKSPACE)


@dataclass(frozen=True)
class CliCandidate:
    binary: str
    prefix: tuple[str, ...] = ()
    label: str = ""

    def argv(self, args: Sequence[str]) -> list[str]:
        return [self.binary, *self.prefix, *args]

    def __str__(self) -> str:
        return self.label or " ".join([self.binary, *self.prefix])


@dataclass
class CliRunResult:
    ok: bool
    stdout: str
    stderr: str
    command: str
    error: str | None = None


@dataclass
class CliJsonResult:
    ok: bool
    payload: Any = None
    diagnostics: list[str] = field(default_factory=list)
    command: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "payload": self.payload,
            "diagnostics": list(self.diagnostics),
            "command": self.command,
            "error": self.error,
        }


def build_candidates(config: CliConfig) -> list[CliCandidate]:
    """Configured command line first, then PATH, then the WSL wrappers."""
    candidates: list[CliCandidate] = []
    if config.executable and config.executable.strip():
        parts = shlex.split(config.executable.strip())
        if parts:
            candidates.append(
                CliCandidate(parts[0], tuple(parts[1:]), f"configured:{config.executable.strip()}")
            )
    candidates.append(CliCandidate(CLI_BINARY, (), CLI_BINARY))
    if config.include_wrappers:
        candidates.append(
            CliCandidate("wsl", ("~/.npm-global/bin/openclaw",), "wsl:~/.npm-global/bin/openclaw")
        )
        candidates.append(CliCandidate("wsl", (CLI_BINARY,), f"wsl:{CLI_BINARY}"))
    return candidates


def extract_json_object(text: str) -> Any | None:
    """Parse ``text`` as JSON, falling back to the outermost ``{...}`` span."""
    trimmed = (text or "").strip()
    if not trimmed:
        return None
    parsed = parse_json_safely(trimmed)
    if parsed is not None:
        return parsed
    first, last = trimmed.find("{"), trimmed.rfind("}")
    if first >= 0 and last > first:
        return parse_json_safely(trimmed[first : last + 1])
    return None


def parse_json_lines(text: str) -> list[Any]:
    records = []
    for line in (text or "").splitlines():
        record = parse_json_safely(line.strip())
        if record is not None:
            records.append(record)
    return records


class _CappedPipeReader(threading.Thread):
    """Drains one child pipe, calling ``on_overflow`` as soon as ``limit`` bytes are exceeded."""

    def __init__(self, stream: io.BufferedIOBase | None, limit: int, on_overflow: Callable[[], None]):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.on_overflow = on_overflow
        self.overflowed = False
        self._chunks: list[bytes] = []
        self._size = 0

    def run(self) -> None:
        if self.stream is None:
            return
        try:
            while True:
                chunk = self.stream.read1(READ_CHUNK_BYTES)
                if not chunk:
                    return
                self._size += len(chunk)
                if self._size > self.limit:
                    self.overflowed = True
                    self.on_overflow()
                    return
                self._chunks.append(chunk)
        except (OSError, ValueError) as e:
            _cli_log.debug("CLI pipe closed while reading: %s", e)

    def finish(self) -> None:
        # A grandchild can keep the pipe open after the child exits.
        self.join(PIPE_DRAIN_SECONDS)
        if not self.is_alive() and self.stream is not None:
            self.stream.close()

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


class CliAdapter:
    """Runs ``openclaw`` subcommands across the candidate executables."""

    def __init__(self, config: CliConfig | None = None):
        self.config = config or CliConfig()
        self.candidates = build_candidates(self.config)

    def run_candidate(self, candidate: CliCandidate, args: Sequence[str]) -> CliRunResult:
        argv = candidate.argv(args)
        command = " ".join(argv)
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            return CliRunResult(False, "", "", command, describe_error(e))

        limit = self.config.max_output_bytes
        readers = [
            _CappedPipeReader(proc.stdout, limit, proc.kill),
            _CappedPipeReader(proc.stderr, limit, proc.kill),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            returncode = proc.wait(timeout=self.config.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            proc.kill()
            returncode = proc.wait()
        for reader in readers:
            reader.finish()

        stdout, stderr = (reader.text() for reader in readers)
        if timed_out:
            return CliRunResult(
                False, "", stderr, command, f"CLI timed out after {self.config.timeout_seconds}s"
            )
        if any(reader.overflowed for reader in readers):
            return CliRunResult(False, "", "", command, f"CLI output exceeded {limit} bytes")
        if returncode != 0:
            error = stderr.strip() or stdout.strip() or f"CLI exited with status {returncode}"
            return CliRunResult(False, stdout, stderr, command, error)
        return CliRunResult(True, stdout, stderr, command)

    def run(self, args: Sequence[str]) -> CliRunResult:
        """Run ``args`` with the first candidate only."""
        return self.run_candidate(self.candidates[0], args)

    def run_json(self, args: Sequence[str]) -> CliJsonResult:
        diagnostics = Diagnostics(logger=_cli_log)
        chain: FallbackChain[CliCandidate] = FallbackChain("[cli]", diagnostics)
        commands: dict[CliCandidate, str] = {}

        def attempt(candidate: CliCandidate) -> Any:
            result = self.run_candidate(candidate, args)
            commands[candidate] = result.command
            if not result.ok:
                raise GatewayRequestError(result.error or "command failed")
            payload = extract_json_object(result.stdout)
            if payload is not None:
                return payload
            records = parse_json_lines(result.stdout)
            if records:
                diagnostics.append(f"[cli] {candidate} returned {len(records)} json lines")
                return records
            raise MalformedResponse("CLI command returned non-JSON output")

        try:
            success = chain.run(self.candidates, attempt)
        except ExhaustedFallback as e:
            _cli_log.info("CLI %s failed on every candidate: %s", " ".join(args), e)
            return CliJsonResult(False, None, diagnostics.lines(), error=describe_error(e))

        diagnostics.append(f"[cli] success {success.candidate}")
        return CliJsonResult(
            True, success.value, diagnostics.lines(), command=commands.get(success.candidate)
        )

    def create_agent(
        self,
        name: str,
        model: str | None = None,
        emoji: str | None = None,
        avatar: str | None = None,
        workspace_dir: str | None = None,
    ) -> CreateAgentResult:
        """``agents add`` followed by a best-effort ``agents set-identity``."""
        diagnostics = Diagnostics(logger=_cli_log)
        name = (name or "").strip()
        if not name:
            return CreateAgentResult(
                created=False, error="Agent name is required for CLI fallback", method="cli"
            )
        workspace = (workspace_dir or "").strip() or self.config.workspace

        add_args = ["agents", "add", name, "--json"]
        if model:
            add_args += ["--model", model]
        add_args += ["--workspace", workspace, "--non-interactive"]

        def attempt(candidate: CliCandidate) -> CliRunResult:
            result = self.run_candidate(candidate, add_args)
            if not result.ok:
                raise GatewayRequestError(result.error or "agents add failed")
            return result

        chain: FallbackChain[CliCandidate] = FallbackChain("[cli] agents add", diagnostics)
        try:
            success = chain.run(self.candidates, attempt)
        except ExhaustedFallback as e:
            return CreateAgentResult(
                created=False, error=describe_error(e), method="cli", diagnostics=diagnostics.lines()
            )

        candidate = success.candidate
        diagnostics.append(f"[cli] add ok ({candidate})")
        agent_id = parse_agent_id(extract_json_object(success.value.stdout))
        if not agent_id:
            return CreateAgentResult(created=True, method="cli", diagnostics=diagnostics.lines())

        identity_args = ["agents", "set-identity", "--agent", agent_id, "--name", name, "--json"]
        identity_args += ["--workspace", workspace]
        if emoji:
            identity_args += ["--emoji", emoji]
        if avatar:
            identity_args += ["--avatar", avatar]

        identity = self.run_candidate(candidate, identity_args)
        if identity.ok:
            diagnostics.append(f"[cli] set-identity ok for {agent_id}")
        else:
            diagnostics.append(f"[cli] set-identity skipped/failed for {agent_id}: {identity.error}")
        return CreateAgentResult(
            created=True, agent_id=agent_id, method="cli", diagnostics=diagnostics.lines()
        )

    # --- read-only operations ---

    def gateway_status(self) -> CliJsonResult:
        return self.run_json(["gateway", "status", "--json"])

    def gateway_config(self) -> CliJsonResult:
        return self.run_json(["config", "get", "gateway", "--json"])

    def channels(self) -> CliJsonResult:
        return self.run_json(["channels", "status", "--json"])

    def sessions(self) -> CliJsonResult:
        return self.run_json(["sessions", "--json"])

    def skills(self) -> CliJsonResult:
        return self.run_json(["skills", "list", "--json"])

    def cron_jobs(self) -> CliJsonResult:
        return self.run_json(["cron", "list", "--json"])

    def usage(self) -> CliJsonResult:
        return self.run_json(["gateway", "usage-cost", "--json"])

    def logs(self, limit: int = 200) -> CliJsonResult:
        return self.run_json(["logs", "--json", "--limit", str(limit)])
