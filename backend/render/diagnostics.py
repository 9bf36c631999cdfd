"""Classification of GLSL compiler logs into per-line diagnostics."""

import re
from dataclasses import dataclass, asdict

# Mesa:    0:12(3): error: `foo' undeclared
# NVIDIA:  0(12) : error C1008: undefined variable "foo"
# ANGLE:   ERROR: 0:12: 'foo' : undeclared identifier
_PATTERNS = [
    re.compile(r"^\s*\d+:(?P<line>\d+)\(\d+\):\s*(?P<sev>error|warning)\s*:?\s*(?P<msg>.*)$", re.I),
    re.compile(r"^\s*\d+\((?P<line>\d+)\)\s*:\s*(?P<sev>error|warning)\b[^:]*:\s*(?P<msg>.*)$", re.I),
    re.compile(r"^\s*(?P<sev>error|warning):\s*\d+:(?P<line>\d+):\s*(?P<msg>.*)$", re.I),
]


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    line: int | None
    message: str

    def format(self) -> str:
        where = f"line {self.line}: " if self.line is not None else ""
        return f"{where}{self.severity}: {self.message}"

    def to_dict(self) -> dict:
        return asdict(self)


class ShaderCompileError(Exception):
    """A candidate was rejected by the compiler; carries classified diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]):
        self.diagnostics = diagnostics
        errors = [d for d in diagnostics if d.severity == "error"] or diagnostics
        super().__init__(errors[0].format() if errors else "Shader failed to compile")


def parse_compiler_log(log: str, line_map=None) -> list[Diagnostic]:
    """Parse a driver compile log.

    ``line_map`` translates compiler line numbers into the user's source
    (see PreparedSource.user_line). Logs in an unknown format become a
    single unlocated error so nothing is dropped.
    """
    diagnostics = []
    for raw in log.splitlines():
        for pattern in _PATTERNS:
            m = pattern.match(raw)
            if m:
                line = int(m.group("line"))
                if line_map is not None:
                    line = line_map(line)
                diagnostics.append(
                    Diagnostic(m.group("sev").lower(), line, m.group("msg").strip())
                )
                break

    if not diagnostics and log.strip():
        diagnostics.append(Diagnostic("error", None, log.strip()))
    return diagnostics
