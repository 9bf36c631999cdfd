"""
Shader request pipeline: compose → complete → extract → swap.

Every request takes a sequence number from a RequestTracker. A completion
that resolves after a newer request was issued (or after the session
invalidated outstanding work) is dropped instead of replacing the shader.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from completion import CompletionClient
from shaders.prompts import compose_shader_prompt, EmptyDescriptionError
from shaders.extractor import extract_shader, ShaderCandidate
from render.diagnostics import Diagnostic
from render.surface import RenderSurface

logger = logging.getLogger(__name__)

APPLIED_MESSAGE = "Here's your shader — check the output panel!"
EXTRACTION_MISS_MESSAGE = "I couldn't generate a valid shader. Try a different description."


class ErrorKind(str, Enum):
    EMPTY_INPUT = "empty_input"
    NETWORK_FAILURE = "network_failure"
    EXTRACTION_MISS = "extraction_miss"
    COMPILE_REJECTED = "compile_rejected"


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class RequestTracker:
    """Monotonic request sequence numbers; only the latest one may apply."""

    def __init__(self):
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def invalidate(self) -> None:
        """Make every outstanding request stale."""
        self._latest += 1

    def is_current(self, sequence: int) -> bool:
        return sequence == self._latest


@dataclass
class PipelineOutcome:
    status: OutcomeStatus
    message: str
    sequence: int | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    candidate: ShaderCandidate | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.status is OutcomeStatus.APPLIED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "sequence": self.sequence,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "source": self.candidate.source if self.candidate else None,
            "method": self.candidate.method.value if self.candidate else None,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "warnings": list(self.warnings),
        }


def _failed(kind: ErrorKind, message: str, error: str, **kwargs) -> PipelineOutcome:
    return PipelineOutcome(
        status=OutcomeStatus.FAILED, message=message,
        error_kind=kind, error=error, **kwargs,
    )


async def run_shader_request(
    description: str,
    *,
    client: CompletionClient,
    surface: RenderSurface,
    tracker: RequestTracker,
) -> PipelineOutcome:
    """Turn a description into a running shader, keeping the last good one on any failure."""
    try:
        prompt = compose_shader_prompt(description)
    except EmptyDescriptionError as e:
        return _failed(ErrorKind.EMPTY_INPUT, "Describe the effect you want first.", str(e))

    sequence = tracker.issue()
    logger.info("Shader request #%d: %r", sequence, description.strip()[:80])

    result = await client.complete(prompt)

    if not tracker.is_current(sequence):
        logger.info("Discarding stale completion #%d (latest is #%d)", sequence, tracker.latest)
        return PipelineOutcome(
            status=OutcomeStatus.SUPERSEDED,
            message="A newer request replaced this one.",
            sequence=sequence,
        )

    if not result.ok:
        return _failed(ErrorKind.NETWORK_FAILURE, f"Error: {result.error}",
                       result.error, sequence=sequence)

    candidate = extract_shader(result.text)
    if candidate is None:
        logger.info("No shader found in completion #%d", sequence)
        return _failed(ErrorKind.EXTRACTION_MISS, EXTRACTION_MISS_MESSAGE,
                       "No shader found in the response", sequence=sequence)

    swap = surface.submit(candidate)
    if not swap.accepted:
        return _failed(
            ErrorKind.COMPILE_REJECTED,
            f"The generated shader was rejected ({swap.error}). "
            "The previous shader is still running.",
            swap.error,
            sequence=sequence, candidate=candidate,
            diagnostics=swap.diagnostics, warnings=swap.warnings,
        )

    return PipelineOutcome(
        status=OutcomeStatus.APPLIED, message=APPLIED_MESSAGE,
        sequence=sequence, candidate=candidate, warnings=swap.warnings,
    )
