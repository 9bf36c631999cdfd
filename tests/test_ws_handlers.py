import asyncio
import json

import pytest

import config
import workspace
import ws_handlers
from conftest import FakeCompletionClient, b64, make_glb, make_gltf
from ws_handlers import SessionState, _sanitize_filename


class FakeWS:
    def __init__(self):
        self.sent = []

    async def send_text(self, data):
        self.sent.append(json.loads(data))


class FakeManager:
    def __init__(self):
        self.broadcasts = []

    async def broadcast(self, message):
        self.broadcasts.append(message)


@pytest.fixture
def ctx(surface, tmp_path, ok_result):
    workspace.init_workspace(tmp_path)
    return SessionState(
        settings=config.Settings(workspace_dir=tmp_path),
        client=FakeCompletionClient(ok_result),
        surface=surface,
        manager=FakeManager(),
    )


def handle(msg, ctx, ws=None):
    ws = ws or FakeWS()

    async def scenario():
        await ws_handlers.HANDLERS[msg["type"]](ws, msg, ctx)
        if ctx.prompt_task is not None:
            await ctx.prompt_task

    asyncio.run(scenario())
    return ws


def types(messages):
    return [m["type"] for m in messages]


@pytest.mark.parametrize("raw, expected", [
    ("my robot.glb", "my_robot.glb"),
    ("../../secret.glb", "secret.glb"),
    ("..glb", "glb"),
    ("  ", "unnamed"),
    ("w@lk$er.gltf", "wlker.gltf"),
])
def test_sanitize_filename(raw, expected):
    assert _sanitize_filename(raw) == expected


def test_prompt_applies_shader_and_finishes(ctx):
    handle({"type": "prompt", "text": "neon grid"}, ctx)
    assert types(ctx.manager.broadcasts) == [
        "user_text", "shader_applied", "assistant_text", "chat_done",
    ]
    assert ctx.manager.broadcasts[1]["status"] == "applied"
    assert not ctx.busy


def test_empty_prompt_is_ignored(ctx):
    ws = handle({"type": "prompt", "text": "  "}, ctx)
    assert ws.sent == [] and ctx.manager.broadcasts == []
    assert ctx.client.prompts == []


def test_prompt_while_busy_is_refused(ctx):
    ctx.busy = True
    ws = handle({"type": "prompt", "text": "stars"}, ctx)
    assert types(ws.sent) == ["log"]
    assert "already being generated" in ws.sent[0]["message"]
    assert ctx.client.prompts == []


def test_prompt_without_key_asks_for_one(ctx):
    ctx.client.api_key = None
    ws = handle({"type": "prompt", "text": "stars"}, ctx)
    assert types(ws.sent) == ["api_key_required"]


def test_prompt_without_renderer(ctx):
    ctx.surface = None
    ws = handle({"type": "prompt", "text": "stars"}, ctx)
    assert ws.sent[0]["type"] == "shader_error"
    assert ws.sent[0]["error"] == "Renderer unavailable"


def test_set_mode_invalidates_outstanding_requests(ctx):
    ctx.tracker.issue()
    handle({"type": "set_mode", "mode": "model"}, ctx)
    assert ctx.mode == "model"
    assert ctx.tracker.latest == 2
    assert ctx.manager.broadcasts[-1]["type"] == "state"
    assert ctx.manager.broadcasts[-1]["mode"] == "model"


def test_set_mode_rejects_unknown(ctx):
    handle({"type": "set_mode", "mode": "audio"}, ctx)
    assert ctx.mode == "shader"
    assert ctx.manager.broadcasts[-1]["level"] == "error"


@pytest.mark.parametrize("msg", [
    {"type": "set_mode", "mode": ["model"]},
    {"type": "set_mode", "mode": {"a": 1}},
    {"type": "set_view", "view": ["code"]},
])
def test_unhashable_mode_or_view_is_rejected(ctx, msg):
    handle(msg, ctx)
    assert (ctx.mode, ctx.view) == ("shader", "visual")
    assert ctx.manager.broadcasts[-1]["level"] == "error"


def test_set_view_and_request_state(ctx):
    ws = handle({"type": "set_view", "view": "code"}, ctx)
    assert ws.sent[-1]["view"] == "code"
    ws = handle({"type": "request_state"}, ctx)
    state = ws.sent[-1]
    assert state["type"] == "state"
    assert state["shader"]["state"] == "running"
    assert state["renderer_available"] is True


def test_resize(ctx, surface):
    handle({"type": "resize", "width": 32, "height": 16}, ctx)
    assert surface.viewport == (32, 16)
    handle({"type": "resize", "width": 0, "height": 16}, ctx)
    assert surface.viewport == (32, 16)
    assert ctx.manager.broadcasts[-1]["message"].startswith("Ignoring resize:")


def test_huge_resize_is_ignored(ctx, surface):
    handle({"type": "resize", "width": 10**9, "height": 10**9}, ctx)
    assert surface.viewport == (8, 4)
    assert ctx.manager.broadcasts[-1]["message"].startswith("Ignoring resize:")
    assert len(surface.render_frame()) == 8 * 4 * 3


def test_upload_model(ctx, tmp_path):
    ctx.tracker.issue()
    data = make_glb(make_gltf(("Hips", "L_Thigh", "R_Thigh")))
    handle({"type": "upload_model", "name": "walker.glb", "data_b64": b64(data)}, ctx)

    loaded = ctx.manager.broadcasts[-1]
    assert loaded["type"] == "model_loaded"
    assert loaded["model"]["url"] == "/api/uploads/walker.glb"
    assert loaded["model"]["animated_joints"] == ["L_Thigh", "R_Thigh"]
    assert ctx.mode == "model"
    assert ctx.tracker.latest == 2
    assert (tmp_path / "uploads" / "walker.glb").read_bytes() == data
    assert (tmp_path / "uploads" / "processed" / "walker_glb" / "skeleton.json").exists()


@pytest.mark.parametrize("msg, error", [
    ({"name": "photo.png", "data_b64": "aGk="}, "Please upload a .glb or .gltf file"),
    ({"name": "a.glb", "data_b64": "not base64!"}, "File 'a.glb' is not valid base64 data"),
    ({"name": "a.glb", "data_b64": "", "size": 11 * 1024 * 1024},
     "File exceeds 10 MB limit (11534336 bytes)"),
])
def test_upload_model_errors(ctx, msg, error):
    handle({"type": "upload_model", **msg}, ctx)
    assert ctx.model is None
    assert ctx.manager.broadcasts[-1] == {"type": "log", "message": error, "level": "error"}


@pytest.mark.parametrize("msg", [
    {"name": None, "data_b64": "aGk="},
    {"name": "a.glb", "data_b64": 42},
    {"name": ["a.glb"], "data_b64": "aGk="},
])
def test_upload_model_rejects_non_string_fields(ctx, msg):
    handle({"type": "upload_model", **msg}, ctx)
    assert ctx.model is None
    assert ctx.manager.broadcasts[-1]["level"] == "error"
    assert "string" in ctx.manager.broadcasts[-1]["message"]


def test_upload_unparseable_model(ctx):
    handle({"type": "upload_model", "name": "bad.gltf", "data_b64": b64(b"{nope")}, ctx)
    assert ctx.model is None
    assert ctx.manager.broadcasts[-1]["message"].startswith("Parse error:")


def test_set_api_key(ctx, monkeypatch):
    saved = []

    async def accept(key, model):
        return key == "sk-good", "Invalid API key"

    monkeypatch.setattr(config, "validate_api_key", accept)
    monkeypatch.setattr(config, "save_api_key", saved.append)

    ws = handle({"type": "set_api_key", "key": " sk-good "}, ctx)
    assert types(ws.sent) == ["api_key_valid"]
    assert saved == ["sk-good"]
    assert ctx.client.api_key == "sk-good"

    ws = handle({"type": "set_api_key", "key": "sk-bad"}, ctx)
    assert ws.sent == [{"type": "api_key_invalid", "error": "Invalid API key"}]
    assert saved == ["sk-good"]


@pytest.mark.parametrize("key", [None, 123, ["sk-good"]])
def test_set_api_key_rejects_non_string(ctx, monkeypatch, key):
    saved = []
    monkeypatch.setattr(config, "save_api_key", saved.append)
    ws = handle({"type": "set_api_key", "key": key}, ctx)
    assert ws.sent == [{"type": "api_key_invalid", "error": "API key must be a string"}]
    assert saved == []
    assert ctx.client.api_key == "sk-test"
