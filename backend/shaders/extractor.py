"""
Shader extraction from free-form model output.

Fenced blocks are found by scanning fence runs rather than with a single
regex: an opener is any run of three or more backticks (or tildes), even in
the middle of a line ("Sure! ```glsl"), and it only closes on a later run of
the same character that is at least as long. Shorter runs inside the body
never terminate the block.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from shaders.prompts import OUTPUT_VARIABLE


class ExtractionMethod(str, Enum):
    FENCED_BLOCK = "fenced_block"
    BARE_BODY = "bare_body"


@dataclass(frozen=True)
class ShaderCandidate:
    source: str
    method: ExtractionMethod
    language: str | None = None


@dataclass(frozen=True)
class FencedBlock:
    body: str
    language: str | None
    start: int
    end: int


SHADER_LANGUAGES = {"glsl", "frag", "fragment", "vert", "shader", "glsles"}

_FENCE_RUN = re.compile(r"`{3,}|~{3,}")
# Optional language tag running to the end of the opener's line.
_INFO_STRING = re.compile(r"[ \t]*([A-Za-z0-9_+#.\-]*)[ \t]*(?:\r?\n|\Z)")
_ENTRY_POINT = re.compile(r"\bvoid\s+main\s*\(\s*(?:void\s*)?\)")
_OUTPUT_WRITE = re.compile(rf"\b(?:gl_FragColor|{OUTPUT_VARIABLE})\b")
_BACKTICK_RUN = re.compile(r"`+")


def has_contract_markers(text: str) -> bool:
    """True when text has both the entry point and the output-write marker."""
    return bool(_ENTRY_POINT.search(text) and _OUTPUT_WRITE.search(text))


def iter_fenced_blocks(text: str) -> Iterator[FencedBlock]:
    """Yield every terminated fenced block in text, in order."""
    pos = 0
    while True:
        opener = _FENCE_RUN.search(text, pos)
        if opener is None:
            return
        char = opener.group()[0]
        body_start = opener.end()
        language = None
        info = _INFO_STRING.match(text, body_start)
        if info:
            language = info.group(1).lower() or None
            body_start = info.end()

        closer = re.compile(
            re.escape(char) + "{%d,}" % len(opener.group())
        ).search(text, body_start)
        if closer is None:
            # Unterminated: skip this opener, a different fence char may still pair up.
            pos = opener.end()
            continue

        yield FencedBlock(
            body=text[body_start:closer.start()],
            language=language,
            start=opener.start(),
            end=closer.end(),
        )
        pos = closer.end()


def _choose_block(blocks: list[FencedBlock]) -> FencedBlock | None:
    for block in blocks:
        if block.language in SHADER_LANGUAGES:
            return block
    for block in blocks:
        if has_contract_markers(block.body):
            return block
    return blocks[0] if blocks else None


def extract_shader(text: str | None) -> ShaderCandidate | None:
    """Derive a shader candidate from raw model output, or None if there is none."""
    if not text:
        return None

    block = _choose_block(list(iter_fenced_blocks(text)))
    if block is not None:
        source = block.body.strip()
        if source:
            return ShaderCandidate(source, ExtractionMethod.FENCED_BLOCK, block.language)

    if has_contract_markers(text):
        return ShaderCandidate(text.strip(), ExtractionMethod.BARE_BODY)

    return None


def wrap_fenced(source: str, language: str | None = "glsl") -> str:
    """Wrap source in a backtick fence longer than any backtick run it contains."""
    longest = max((len(m.group()) for m in _BACKTICK_RUN.finditer(source)), default=0)
    fence = "`" * max(3, longest + 1)
    return f"{fence}{language or ''}\n{source}\n{fence}"
