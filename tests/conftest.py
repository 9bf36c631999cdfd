import base64
import json
import struct

import pytest

from completion import CompletionResult
from render.diagnostics import Diagnostic, ShaderCompileError
from render.surface import RenderSurface


class FakeProgram:
    def __init__(self, source):
        self.source = source
        self.released = False

    def release(self):
        self.released = True


class FakeBackend:
    """Stands in for the GL backend: records compiles and draws, returns black frames."""

    def __init__(self, size=(8, 4), max_size=(1024, 1024)):
        self.size = size
        self.max_size = max_size
        self.reject = False
        self.compiled = []
        self.draws = []
        self.released = False

    def compile(self, source):
        if self.reject:
            raise ShaderCompileError([Diagnostic("error", 1, "syntax error, unexpected '}'")])
        program = FakeProgram(source)
        self.compiled.append(program)
        return program

    def draw(self, program, uniforms):
        self.draws.append((program, uniforms))
        w, h = uniforms.viewport_size
        return bytes(w * h * 3)

    def resize(self, width, height):
        if width > self.max_size[0] or height > self.max_size[1]:
            raise ValueError(f"Cannot allocate a {width}x{height} framebuffer")
        self.size = (width, height)

    def release(self):
        self.released = True


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeCompletionClient:
    """Replays canned CompletionResults; ``gate`` holds a call until it is set."""

    def __init__(self, *results, api_key="sk-test", gate=None):
        self.results = list(results)
        self.api_key = api_key
        self.gate = gate
        self.prompts = []

    def set_api_key(self, key):
        self.api_key = key

    async def complete(self, prompt):
        self.prompts.append(prompt)
        result = self.results.pop(0)
        if self.gate is not None:
            await self.gate.wait()
        return result


def fenced(source, language="glsl"):
    return f"Here you go!\n```{language}\n{source}\n```\nEnjoy."


GOOD_SHADER = """\
#version 300 es
precision highp float;
in vec2 v_uv;
uniform float u_time;
uniform vec2 u_resolution;
out vec4 fragColor;
void main() {
  fragColor = vec4(v_uv, 0.5 + 0.5 * sin(u_time), 1.0);
}"""


def make_gltf(joint_names=("Hips", "L_Thigh", "L_Calf", "R_Thigh", "R_Calf")):
    """A minimal skinned glTF: a root node, a chain of joints, and one mesh node."""
    nodes = [{"name": "Armature", "children": [1]}]
    for i, name in enumerate(joint_names):
        node = {"name": name}
        if i + 1 < len(joint_names):
            node["children"] = [i + 2]
        nodes.append(node)
    nodes.append({"name": "Body", "mesh": 0, "skin": 0})
    return {
        "asset": {"version": "2.0"},
        "nodes": nodes,
        "meshes": [{"primitives": []}],
        "skins": [{"joints": list(range(1, len(joint_names) + 1))}],
    }


def make_glb(gltf, version=2, magic=0x46546C67):
    payload = json.dumps(gltf).encode("utf-8")
    payload += b" " * (-len(payload) % 4)
    total = 12 + 8 + len(payload)
    return (
        struct.pack("<III", magic, version, total)
        + struct.pack("<II", len(payload), 0x4E4F534A)
        + payload
    )


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def surface(backend, clock):
    s = RenderSurface(backend, viewport=(8, 4), clock=clock)
    s.start()
    return s


@pytest.fixture
def ok_result():
    return CompletionResult.success(fenced(GOOD_SHADER))
