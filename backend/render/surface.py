"""
Render surface: owns the active shader program and the frame loop.

States
------
IDLE            no program yet
RUNNING         an ActiveProgram drives every frame
SWAP_PENDING    a candidate arrived and is being validated / compiled
COMPILE_FAILED  the candidate was rejected; the previous program stays

A swap installs the new program before releasing the old one. Swaps and
frames both run on the event loop thread, so a program is never released
while a frame is using it.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from shaders.extractor import ShaderCandidate
from shaders.prompts import DEFAULT_FRAGMENT_SHADER
from shaders.validator import validate_fragment_shader
from render.diagnostics import Diagnostic, ShaderCompileError

logger = logging.getLogger(__name__)


class SurfaceState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SWAP_PENDING = "swap_pending"
    COMPILE_FAILED = "compile_failed"


@dataclass(frozen=True)
class FrameUniforms:
    elapsed_time: float
    viewport_size: tuple[int, int]


@dataclass
class SwapResult:
    accepted: bool
    source: str
    error: str | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    transitions: list[SurfaceState] = field(default_factory=list)


class RenderSurface:
    def __init__(self, backend, viewport: tuple[int, int] = (640, 360),
                 clock=time.monotonic, history: int = 64, max_viewport: int = 4096):
        self.backend = backend
        self.viewport = viewport
        self.max_viewport = max_viewport
        self._clock = clock
        self._started_at = clock()
        self._program = None
        self.state = SurfaceState.IDLE
        self.active_source: str | None = None
        self.active_method: str | None = None
        self.transitions: deque[SurfaceState] = deque([SurfaceState.IDLE], maxlen=history)
        self.latest_frame: bytes | None = None
        self.latest_frame_size: tuple[int, int] | None = None
        self.frame_count = 0
        self._running = False

    # ------------------------------------------------------------------
    # Program swaps
    # ------------------------------------------------------------------

    @property
    def has_program(self) -> bool:
        return self._program is not None

    def _enter(self, state: SurfaceState, trail: list[SurfaceState]) -> None:
        self.state = state
        self.transitions.append(state)
        trail.append(state)

    def start(self, source: str = DEFAULT_FRAGMENT_SHADER) -> SwapResult:
        """Install the built-in shader if nothing is running yet."""
        if self.has_program:
            return SwapResult(accepted=True, source=self.active_source)
        result = self._swap(source, method="built_in")
        if not result.accepted:
            logger.error("Built-in shader was rejected: %s", result.error)
        return result

    def submit(self, candidate: ShaderCandidate) -> SwapResult:
        """Try to replace the active program with a new candidate."""
        return self._swap(candidate.source, method=candidate.method.value)

    def _swap(self, source: str, method: str) -> SwapResult:
        trail: list[SurfaceState] = []
        fallback = SurfaceState.RUNNING if self.has_program else SurfaceState.IDLE
        self._enter(SurfaceState.SWAP_PENDING, trail)

        report = validate_fragment_shader(source)
        if not report.ok:
            return self._reject(
                source,
                f"Shader failed validation: {report.errors[0]}",
                [Diagnostic("error", None, e) for e in report.errors],
                report.warnings, fallback, trail,
            )

        try:
            program = self.backend.compile(source)
        except ShaderCompileError as e:
            return self._reject(
                source, f"Shader failed to compile: {e}",
                e.diagnostics, report.warnings, fallback, trail,
            )

        previous = self._program
        self._program = program
        self.active_source = source
        self.active_method = method
        self._enter(SurfaceState.RUNNING, trail)
        if previous is not None:
            previous.release()

        logger.info("Shader installed (%s, %d chars)", method, len(source))
        return SwapResult(accepted=True, source=source,
                          warnings=report.warnings, transitions=trail)

    def _reject(self, source, error, diagnostics, warnings, fallback, trail) -> SwapResult:
        self._enter(SurfaceState.COMPILE_FAILED, trail)
        logger.warning("%s", error)
        self._enter(fallback, trail)
        return SwapResult(
            accepted=False, source=source, error=error,
            diagnostics=list(diagnostics), warnings=warnings, transitions=trail,
        )

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def frame_uniforms(self) -> FrameUniforms:
        return FrameUniforms(elapsed_time=self.elapsed(), viewport_size=self.viewport)

    def render_frame(self) -> bytes | None:
        """Draw one frame with fresh uniforms. Returns None while idle."""
        if self._program is None:
            return None
        uniforms = self.frame_uniforms()
        pixels = self.backend.draw(self._program, uniforms)
        self.latest_frame = pixels
        self.latest_frame_size = uniforms.viewport_size
        self.frame_count += 1
        return pixels

    def resize(self, width: int, height: int) -> None:
        """Change the viewport. Raises ValueError and keeps the old one if the size is refused."""
        if not (0 < width <= self.max_viewport and 0 < height <= self.max_viewport):
            raise ValueError(
                f"Viewport must be within 1..{self.max_viewport} on each side, "
                f"got {width}x{height}"
            )
        size = (int(width), int(height))
        self.backend.resize(*size)
        self.viewport = size

    async def run(self, fps: float = 30.0) -> None:
        """Continuous frame loop; never awaits anything but its own tick."""
        interval = 1.0 / fps
        self._running = True
        logger.info("Frame loop started at %.1f fps", fps)
        while self._running:
            tick = time.monotonic()
            try:
                self.render_frame()
            except Exception:
                logger.exception("Frame %d failed", self.frame_count)
            await asyncio.sleep(max(0.0, interval - (time.monotonic() - tick)))
        logger.info("Frame loop stopped after %d frames", self.frame_count)

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        self.stop()
        if self._program is not None:
            self._program.release()
            self._program = None
        self.backend.release()

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "source": self.active_source,
            "method": self.active_method,
            "viewport": list(self.viewport),
            "elapsed": round(self.elapsed(), 3),
            "frames": self.frame_count,
            "transitions": [s.value for s in self.transitions],
        }
