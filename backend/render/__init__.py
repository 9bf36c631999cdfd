"""glint render surface package.

The moderngl backend lives in render.backend and is imported by the server
only; everything exported here runs without an OpenGL context.
"""

from render.surface import RenderSurface, SurfaceState, FrameUniforms, SwapResult
from render.diagnostics import Diagnostic, ShaderCompileError, parse_compiler_log
