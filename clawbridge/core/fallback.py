"""Ordered fallback chain shared by the socket, HTTP and CLI layers.

Candidates are attempted strictly one after another. The first success wins;
a stop-error (AuthenticationFailure by default) propagates at once; any other
failure is recorded in the diagnostics trail and the next candidate is tried.
Only exhausting every candidate raises ExhaustedFallback.
"""

from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from clawbridge.core.errors import AuthenticationFailure, ExhaustedFallback, describe_error
from clawbridge.core.types import Diagnostics

C = TypeVar("C")
T = TypeVar("T")


@dataclass
class ChainSuccess(Generic[C, T]):
    candidate: C
    value: T
    attempts: int


class FallbackChain(Generic[C]):
    """Try candidates in order, collecting a diagnostic line per attempt.

    Args:
        label: Prefix for diagnostic lines, e.g. ``"[WS]"``.
        diagnostics: Trail that receives one line per attempt and failure.
        name: Renders a candidate for diagnostics (defaults to ``str``).
        stop_on: Exception types that abort the chain immediately.
    """

    def __init__(
        self,
        label: str,
        diagnostics: Diagnostics,
        name: Callable[[C], str] = str,
        stop_on: tuple[type[BaseException], ...] = (AuthenticationFailure,),
        attempt_verb: str = "trying",
    ) -> None:
        self.label = label
        self.diagnostics = diagnostics
        self.name = name
        self.stop_on = stop_on
        self.attempt_verb = attempt_verb
        self.errors: list[tuple[str, Exception]] = []

    def _record_attempt(self, candidate: C) -> str:
        rendered = self.name(candidate)
        self.diagnostics.append(f"{self.label} {self.attempt_verb} {rendered}")
        return rendered

    def _record_failure(self, rendered: str, error: Exception) -> None:
        self.errors.append((rendered, error))
        self.diagnostics.append(f"{self.label} {rendered} failed: {describe_error(error)}")

    def _exhausted(self, candidates: Sequence[C]) -> ExhaustedFallback:
        if not candidates:
            message = f"{self.label} no candidates to try"
        elif self.errors:
            message = describe_error(self.errors[-1][1])
        else:
            message = f"{self.label} no candidate succeeded"
        return ExhaustedFallback(message, errors=self.errors, diagnostics=self.diagnostics.lines())

    def run(self, candidates: Iterable[C], attempt: Callable[[C], T]) -> ChainSuccess[C, T]:
        ordered = list(candidates)
        for index, candidate in enumerate(ordered, start=1):
            rendered = self._record_attempt(candidate)
            try:
                value = attempt(candidate)
            except self.stop_on:
                raise
            except Exception as e:
                self._record_failure(rendered, e)
                continue
            return ChainSuccess(candidate=candidate, value=value, attempts=index)
        raise self._exhausted(ordered)

    async def arun(
        self, candidates: Iterable[C], attempt: Callable[[C], Awaitable[T]]
    ) -> ChainSuccess[C, T]:
        ordered = list(candidates)
        for index, candidate in enumerate(ordered, start=1):
            rendered = self._record_attempt(candidate)
            try:
                value = await attempt(candidate)
            except self.stop_on:
                raise
            except Exception as e:
                self._record_failure(rendered, e)
                continue
            return ChainSuccess(candidate=candidate, value=value, attempts=index)
        raise self._exhausted(ordered)
