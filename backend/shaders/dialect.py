"""
Rewrite contract shaders (WebGL2 / GLSL ES flavoured) into desktop GLSL 330.

The headless renderer runs on a core-profile context, so `#version 300 es`
and a few GLSL ES 1.0 leftovers (varying, gl_FragColor, texture2D) have to be
translated before compiling. Declarations the contract implies but the model
forgot are injected into a header; `line_offset` records how many lines the
header adds so compiler diagnostics can be mapped back to the original.
"""

import re
from dataclasses import dataclass

from shaders.prompts import CONTRACT_UNIFORMS, OUTPUT_VARIABLE, UV_VARYING

DESKTOP_VERSION = "#version 330"

_VERSION_LINE = re.compile(r"^[ \t]*#[ \t]*version\b.*$", re.MULTILINE)
_REWRITES = [
    (re.compile(r"\bvarying\b"), "in"),
    (re.compile(r"\bgl_FragColor\b"), OUTPUT_VARIABLE),
    (re.compile(r"\btexture2D\s*\("), "texture("),
    (re.compile(r"\btextureCube\s*\("), "texture("),
]


@dataclass(frozen=True)
class PreparedSource:
    text: str
    line_offset: int

    def user_line(self, line: int | None) -> int | None:
        """Map a line in the prepared text back to the original source (None if in the header)."""
        if line is None:
            return None
        mapped = line - self.line_offset
        return mapped if mapped > 0 else None


def _declares(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


def to_desktop_glsl(source: str) -> PreparedSource:
    """Translate a fragment shader into GLSL 330 with the contract declarations present."""
    # Blank the version line instead of deleting it to keep line numbers stable.
    body = _VERSION_LINE.sub("", source)
    for pattern, replacement in _REWRITES:
        body = pattern.sub(replacement, body)

    header = [DESKTOP_VERSION]

    if not _declares(rf"\bout\s+(?:\w+\s+)?vec4\s+{OUTPUT_VARIABLE}\b", body):
        header.append(f"out vec4 {OUTPUT_VARIABLE};")

    if (_declares(rf"\b{UV_VARYING}\b", body)
            and not _declares(rf"\bin\s+(?:\w+\s+)?vec2\s+{UV_VARYING}\b", body)):
        header.append(f"in vec2 {UV_VARYING};")

    for name, utype in CONTRACT_UNIFORMS.items():
        if (_declares(rf"\b{name}\b", body)
                and not _declares(rf"\buniform\s+(?:\w+\s+)?\w+\s+{name}\b", body)):
            header.append(f"uniform {utype} {name};")

    return PreparedSource(text="\n".join(header) + "\n" + body, line_offset=len(header))
