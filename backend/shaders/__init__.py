"""Shader text pipeline: prompt, extraction, validation and GLSL dialect."""

from shaders.prompts import (
    compose_shader_prompt,
    EmptyDescriptionError,
    DEFAULT_FRAGMENT_SHADER,
    CONTRACT_UNIFORMS,
    OUTPUT_VARIABLE,
)
from shaders.extractor import (
    extract_shader,
    wrap_fenced,
    ExtractionMethod,
    ShaderCandidate,
)
from shaders.validator import validate_fragment_shader, ValidationReport
from shaders.dialect import to_desktop_glsl, PreparedSource
