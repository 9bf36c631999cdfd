"""
Headless OpenGL backend (moderngl standalone context).

Draws a fullscreen quad into an offscreen framebuffer. Fragment shaders are
translated to desktop GLSL first, and driver compile logs are converted into
ShaderCompileError with diagnostics on the user's line numbers.
"""

import logging

import moderngl
import numpy as np

from shaders.dialect import to_desktop_glsl
from shaders.prompts import TIME_UNIFORM, RESOLUTION_UNIFORM
from render.diagnostics import ShaderCompileError, parse_compiler_log

logger = logging.getLogger(__name__)

VERTEX_SHADER = """
#version 330
in vec2 in_vert;
out vec2 v_uv;
void main() {
    v_uv = in_vert * 0.5 + 0.5;
    gl_Position = vec4(in_vert, 0.0, 1.0);
}
"""

_QUAD = np.array([
    -1.0, -1.0,
     1.0, -1.0,
    -1.0,  1.0,
     1.0,  1.0,
], dtype="f4")


class GLProgram:
    """A linked program plus its vertex array, owned by one backend."""

    def __init__(self, program, vao, source: str):
        self.program = program
        self.vao = vao
        self.source = source

    def set_uniforms(self, uniforms) -> None:
        # The compiler drops uniforms the shader never reads.
        time_uniform = self.program.get(TIME_UNIFORM, None)
        if time_uniform is not None:
            time_uniform.value = float(uniforms.elapsed_time)
        resolution = self.program.get(RESOLUTION_UNIFORM, None)
        if resolution is not None:
            w, h = uniforms.viewport_size
            resolution.value = (float(w), float(h))

    def release(self) -> None:
        self.vao.release()
        self.program.release()


def open_context(backend: str | None = None):
    """Open a standalone GL context.

    With no explicit backend, EGL is tried first so a server without an X
    display still renders; the platform default is the fallback.
    """
    if backend:
        return moderngl.create_context(standalone=True, backend=backend)
    try:
        return moderngl.create_context(standalone=True, backend="egl")
    except Exception as e:
        logger.info("EGL context unavailable (%s), trying the default backend", e)
    return moderngl.create_context(standalone=True)


class GLBackend:
    def __init__(self, size: tuple[int, int] = (640, 360), ctx=None):
        self.ctx = ctx or open_context()
        self.vbo = self.ctx.buffer(_QUAD.tobytes())
        self.max_size = self._max_framebuffer_size()
        self.size = None
        self.fbo = None
        self.resize(*size)
        logger.info("GL backend ready: %s (%dx%d, max %dx%d)",
                    self.ctx.info.get("GL_RENDERER", "unknown"), *size, *self.max_size)

    def _max_framebuffer_size(self) -> tuple[int, int]:
        info = self.ctx.info
        max_w, max_h = info.get("GL_MAX_VIEWPORT_DIMS") or (16384, 16384)
        texture = info.get("GL_MAX_TEXTURE_SIZE") or max(max_w, max_h)
        return min(max_w, texture), min(max_h, texture)

    def _make_framebuffer(self, size: tuple[int, int]) -> None:
        """Build a framebuffer for ``size``; the current one is replaced only on success."""
        texture = None
        try:
            texture = self.ctx.texture(size, 3)
            fbo = self.ctx.framebuffer(color_attachments=[texture])
        except moderngl.Error as e:
            if texture is not None:
                texture.release()
            raise ValueError(f"Cannot allocate a {size[0]}x{size[1]} framebuffer: {e}") from e
        if self.fbo is not None:
            self.fbo.release()
        self.fbo = fbo
        self.size = size

    def compile(self, fragment_source: str) -> GLProgram:
        prepared = to_desktop_glsl(fragment_source)
        try:
            program = self.ctx.program(
                vertex_shader=VERTEX_SHADER,
                fragment_shader=prepared.text,
            )
        except moderngl.Error as e:
            raise ShaderCompileError(
                parse_compiler_log(str(e), line_map=prepared.user_line)
            ) from e
        vao = self.ctx.vertex_array(program, [(self.vbo, "2f", "in_vert")])
        return GLProgram(program, vao, fragment_source)

    def draw(self, program: GLProgram, uniforms) -> bytes:
        """Render one frame and return tightly packed RGB rows (bottom row first)."""
        if tuple(uniforms.viewport_size) != self.size:
            self.resize(*uniforms.viewport_size)
        program.set_uniforms(uniforms)
        self.fbo.use()
        self.fbo.clear(0.05, 0.05, 0.05)
        program.vao.render(moderngl.TRIANGLE_STRIP)
        return self.fbo.read(components=3, alignment=1)

    def resize(self, width: int, height: int) -> None:
        """Raises ValueError, leaving the current framebuffer intact, if the size is unusable."""
        max_w, max_h = self.max_size
        if not (0 < width <= max_w and 0 < height <= max_h):
            raise ValueError(
                f"Viewport {width}x{height} is outside 1x1..{max_w}x{max_h}"
            )
        self._make_framebuffer((int(width), int(height)))

    def release(self) -> None:
        if self.fbo is not None:
            self.fbo.release()
            self.fbo = None
        self.vbo.release()
        self.ctx.release()


def create_backend(size: tuple[int, int], gl_backend: str | None = None) -> GLBackend:
    return GLBackend(size=size, ctx=open_context(gl_backend))
