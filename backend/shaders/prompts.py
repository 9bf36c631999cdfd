"""Prompt composition and the shader contract shared by the whole pipeline."""

TIME_UNIFORM = "u_time"
RESOLUTION_UNIFORM = "u_resolution"
UV_VARYING = "v_uv"
OUTPUT_VARIABLE = "fragColor"

# Uniform name → GLSL type that the render surface submits every frame.
CONTRACT_UNIFORMS = {
    TIME_UNIFORM: "float",
    RESOLUTION_UNIFORM: "vec2",
}

DEFAULT_FRAGMENT_SHADER = """\
#version 300 es
precision highp float;
in vec2 v_uv;
uniform float u_time;
uniform vec2 u_resolution;
out vec4 fragColor;
void main() {
  vec2 uv = (v_uv - 0.5) * 2.0;
  float wave = sin(uv.x * 10.0 + u_time * 5.0) * 0.5 + 0.5;
  vec3 col = 0.5 + 0.5 * cos(u_time + vec3(0.0, 1.0, 2.0) + wave * 3.0);
  fragColor = vec4(col, 1.0);
}
"""

SHADER_PROMPT_TEMPLATE = """\
Generate a GLSL fragment shader based on this description: "{description}"

Requirements:
- Target WebGL2: start with `#version 300 es` and `precision highp float;`
- Use these exact uniforms: uniform float {time}; uniform vec2 {resolution};
- The interpolated coordinate is `in vec2 {uv};` (0..1 across the canvas)
- Write the final color to `out vec4 {output};` inside a parameterless `void main()`
- Do not declare any other uniforms, textures or inputs
- The shader should be animated using {time}
- Return ONLY the fragment shader code in a single ```glsl code block, no explanations
- Make it visually interesting and creative"""


class EmptyDescriptionError(ValueError):
    """Raised when a description is empty after trimming."""


def compose_shader_prompt(description: str) -> str:
    """Wrap a free-text description into the full instruction sent to the model."""
    text = (description or "").strip()
    if not text:
        raise EmptyDescriptionError("Description is empty")
    return SHADER_PROMPT_TEMPLATE.format(
        description=text.replace('"', "'"),
        time=TIME_UNIFORM,
        resolution=RESOLUTION_UNIFORM,
        uv=UV_VARYING,
        output=OUTPUT_VARIABLE,
    )
