"""
Structural validation of a fragment shader before it reaches the compiler.

This is a token-level check, not a GLSL parser. It catches the failures a
model produces most often (truncated output, missing entry point, wrong
output variable, contract uniforms with the wrong type) with messages that
point at a line, and leaves everything else to the real compiler.
"""

import re
from dataclasses import dataclass, field

from shaders.prompts import CONTRACT_UNIFORMS, OUTPUT_VARIABLE

_TOKEN = re.compile(
    r"""
    (?P<ident>[A-Za-z_]\w*)
  | (?P<number>\d+\.?\d*(?:[eE][+-]?\d+)?[fFuU]?|\.\d+(?:[eE][+-]?\d+)?[fF]?)
  | (?P<op>==|!=|<=|>=|\+=|-=|\*=|/=|%=|&&|\|\||\+\+|--|<<=?|>>=?|[-+*/%=<>!&|^~?:;,.(){}\[\]])
  | (?P<space>\s+)
  | (?P<other>.)
    """,
    re.VERBOSE,
)

_ASSIGN_OPS = {"=", "+=", "-=", "*=", "/="}
_OPENERS = {"(": ")", "{": "}", "[": "]"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}
_PRECISION = {"lowp", "mediump", "highp"}
_OUTPUT_NAMES = {OUTPUT_VARIABLE, "gl_FragColor"}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    uniforms: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def strip_comments(source: str) -> str:
    """Blank out // and /* */ comments, keeping newlines so line numbers survive."""
    out = []
    i, n = 0, len(source)
    while i < n:
        if source.startswith("//", i):
            end = source.find("\n", i)
            i = n if end < 0 else end
        elif source.startswith("/*", i):
            end = source.find("*/", i + 2)
            chunk = source[i:] if end < 0 else source[i:end + 2]
            out.append("\n" * chunk.count("\n"))
            i = n if end < 0 else end + 2
        else:
            out.append(source[i])
            i += 1
    return "".join(out)


def tokenize(source: str) -> list[Token]:
    """Tokenize GLSL source, skipping comments and preprocessor lines."""
    tokens = []
    for lineno, line in enumerate(strip_comments(source).split("\n"), start=1):
        if line.lstrip().startswith("#"):
            continue
        for m in _TOKEN.finditer(line):
            kind = m.lastgroup
            if kind == "space":
                continue
            tokens.append(Token(kind, m.group(), lineno))
    return tokens


def _check_balance(tokens: list[Token], report: ValidationReport) -> None:
    stack: list[Token] = []
    for tok in tokens:
        if tok.text in _OPENERS:
            stack.append(tok)
        elif tok.text in _CLOSERS:
            if not stack or stack[-1].text != _CLOSERS[tok.text]:
                report.errors.append(f"Unexpected '{tok.text}' at line {tok.line}")
                return
            stack.pop()
    if stack:
        tok = stack[-1]
        report.errors.append(
            f"Unclosed '{tok.text}' opened at line {tok.line} (output may be truncated)"
        )


def _has_entry_point(tokens: list[Token]) -> bool:
    texts = [t.text for t in tokens]
    depth = 0
    for i, text in enumerate(texts):
        if text == "{":
            depth += 1
        elif text == "}":
            depth -= 1
        elif depth == 0 and text == "void" and texts[i + 1:i + 3] == ["main", "("]:
            rest = texts[i + 3:i + 6]
            if rest[:2] == [")", "{"] or rest == ["void", ")", "{"]:
                return True
    return False


def _writes_output(tokens: list[Token]) -> bool:
    for i, tok in enumerate(tokens):
        if tok.text not in _OUTPUT_NAMES:
            continue
        j = i + 1
        # Skip swizzles and indexing: fragColor.rgb = ..., fragColor[0] = ...
        while j < len(tokens):
            if tokens[j].text == "." and j + 1 < len(tokens):
                j += 2
            elif tokens[j].text == "[":
                while j < len(tokens) and tokens[j].text != "]":
                    j += 1
                j += 1
            else:
                break
        if j < len(tokens) and tokens[j].text in _ASSIGN_OPS:
            return True
        # Passed as an out argument: mainImage(fragColor, ...)
        if (i > 0 and tokens[i - 1].text in {"(", ","}
                and j < len(tokens) and tokens[j].text in {",", ")"}):
            return True
    return False


def _collect_uniforms(tokens: list[Token]) -> dict[str, tuple[str, int]]:
    """Map uniform name → (type, line) for every `uniform` declaration."""
    found = {}
    for i, tok in enumerate(tokens):
        if tok.text != "uniform":
            continue
        j = i + 1
        while j < len(tokens) and tokens[j].text in _PRECISION:
            j += 1
        if j >= len(tokens):
            break
        utype = tokens[j].text
        j += 1
        while j < len(tokens) and tokens[j].kind == "ident":
            found[tokens[j].text] = (utype, tokens[j].line)
            j += 1
            if j < len(tokens) and tokens[j].text == "[":
                while j < len(tokens) and tokens[j].text != "]":
                    j += 1
                j += 1
            if j < len(tokens) and tokens[j].text == ",":
                j += 1
                continue
            break
    return found


def validate_fragment_shader(source: str) -> ValidationReport:
    """Check a candidate against the shader contract.

    Errors make the candidate unusable; warnings are surfaced but the
    candidate still goes to the compiler.
    """
    report = ValidationReport()
    tokens = tokenize(source)
    if not tokens:
        report.errors.append("Shader source is empty")
        return report

    _check_balance(tokens, report)

    if not _has_entry_point(tokens):
        report.errors.append("No parameterless 'void main()' entry point")

    if not _writes_output(tokens):
        report.errors.append(f"Shader never writes to {OUTPUT_VARIABLE}")

    declared = _collect_uniforms(tokens)
    report.uniforms = {name: utype for name, (utype, _) in declared.items()}

    for name, expected in CONTRACT_UNIFORMS.items():
        if name not in declared:
            report.warnings.append(f"{name} is not declared as 'uniform {expected}'")
            continue
        utype, line = declared[name]
        if utype != expected:
            report.errors.append(
                f"{name} must be declared as 'uniform {expected}', "
                f"found '{utype}' at line {line}"
            )

    for name in declared:
        if name not in CONTRACT_UNIFORMS:
            report.warnings.append(
                f"Uniform '{name}' is not supplied by the renderer and keeps its default value"
            )

    if any(t.text == "gl_FragColor" for t in tokens):
        report.warnings.append(f"gl_FragColor is deprecated; use out vec4 {OUTPUT_VARIABLE}")

    return report
