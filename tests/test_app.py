import json

import pytest
from fastapi.testclient import TestClient

import main
from completion import CompletionResult
from conftest import FakeBackend, FakeCompletionClient, GOOD_SHADER, b64, fenced, make_gltf


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("GLINT_WORKSPACE_DIR", str(tmp_path))
    monkeypatch.setenv("GLINT_VIEWPORT", "8x4")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setattr(main.config, "load_api_key", lambda: "sk-test")
    monkeypatch.setattr(main, "create_backend", lambda size, gl_backend=None: FakeBackend(size))
    return tmp_path


@pytest.fixture
def app_client(env):
    with TestClient(main.app) as client:
        yield client


def use_completions(client, *results):
    fake = FakeCompletionClient(*results)
    client.app.state.session.client = fake
    return fake


def test_chat(app_client):
    use_completions(app_client, CompletionResult.success("Hello there"))
    resp = app_client.post("/api/chat", json={"prompt": "hi"})
    assert resp.status_code == 200
    assert resp.json() == {"response": "Hello there"}


@pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": 3}, {"prompt": None}])
def test_chat_requires_prompt(app_client, body):
    resp = app_client.post("/api/chat", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Prompt is required"}


def test_chat_passes_whitespace_prompt_verbatim(app_client):
    fake = use_completions(app_client, CompletionResult.success("ok"))
    resp = app_client.post("/api/chat", json={"prompt": "   "})
    assert resp.status_code == 200
    assert fake.prompts == ["   "]


def test_chat_failure(app_client):
    use_completions(app_client, CompletionResult.failure("Completion service returned status 500"))
    resp = app_client.post("/api/chat", json={"prompt": "hi"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to get response from Claude"}


def test_shader_applied(app_client):
    use_completions(app_client, CompletionResult.success(fenced(GOOD_SHADER)))
    resp = app_client.post("/api/shader", json={"description": "a glowing ring"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "applied"

    state = app_client.get("/api/shader").json()
    assert state["state"] == "running"
    assert state["source"] == GOOD_SHADER
    assert state["method"] == "fenced_block"


@pytest.mark.parametrize("result, status, kind", [
    (CompletionResult.failure("Could not reach the completion service"), 502, "network_failure"),
    (CompletionResult.success("I cannot help with that."), 422, "extraction_miss"),
    (CompletionResult.success(fenced("void main() {")), 422, "compile_rejected"),
])
def test_shader_failures_keep_built_in(app_client, result, status, kind):
    use_completions(app_client, result)
    resp = app_client.post("/api/shader", json={"description": "anything"})
    assert resp.status_code == status
    assert resp.json()["error_kind"] == kind
    assert app_client.get("/api/shader").json()["method"] == "built_in"


def test_shader_empty_description(app_client):
    fake = use_completions(app_client)
    resp = app_client.post("/api/shader", json={"description": "  "})
    assert resp.status_code == 400
    assert resp.json()["error_kind"] == "empty_input"
    assert fake.prompts == []


def test_shader_busy(app_client):
    app_client.app.state.session.busy = True
    resp = app_client.post("/api/shader", json={"description": "rain"})
    assert resp.status_code == 409


def test_frame_png(app_client):
    resp = app_client.get("/api/frame.png")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content.startswith(b"\x89PNG\r\n\x1a\n")


def test_no_renderer(env, monkeypatch):
    def no_gl(size, gl_backend=None):
        raise RuntimeError("no display")

    monkeypatch.setattr(main, "create_backend", no_gl)
    with TestClient(main.app) as client:
        assert client.post("/api/shader", json={"description": "x"}).status_code == 503
        assert client.get("/api/shader").status_code == 503
        assert client.get("/api/frame.png").status_code == 503
        # Chat still works without a renderer.
        assert client.post("/api/chat", json={}).status_code == 400


def test_model_endpoints_before_upload(app_client):
    assert app_client.get("/api/model").status_code == 404
    assert app_client.get("/api/model/pose").status_code == 404


def test_websocket_session(app_client):
    use_completions(app_client, CompletionResult.success(fenced(GOOD_SHADER)))
    gltf = json.dumps(make_gltf(("Hips", "L_Thigh", "R_Thigh"))).encode()

    with app_client.websocket_connect("/ws") as ws:
        init = ws.receive_json()
        assert init["type"] == "init"
        assert init["mode"] == "shader"
        assert init["api_key_set"] is True
        assert init["shader"]["method"] == "built_in"

        ws.send_json({"type": "prompt", "text": "sunset"})
        received = [ws.receive_json() for _ in range(4)]
        assert [m["type"] for m in received] == [
            "user_text", "shader_applied", "assistant_text", "chat_done",
        ]

        ws.send_json({"type": "upload_model", "name": "walker.gltf", "data_b64": b64(gltf)})
        loaded = ws.receive_json()
        assert loaded["type"] == "model_loaded"

        ws.send_json({"type": "bogus"})
        assert ws.receive_json()["message"] == "Unknown message type: 'bogus'"

        ws.send_text("not json")
        assert ws.receive_json()["message"] == "Malformed message"

    model = app_client.get("/api/model").json()
    assert model["name"] == "walker.gltf"
    pose = app_client.get("/api/model/pose").json()
    assert set(pose["joints"]) == {"L_Thigh", "R_Thigh"}

    upload = app_client.get("/api/uploads/walker.gltf")
    assert upload.status_code == 200
    assert upload.headers["content-type"].startswith("model/gltf+json")
    assert app_client.get("/api/uploads/../secrets.env").status_code == 404


def test_websocket_survives_malformed_fields(app_client):
    with app_client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["type"] == "init"

        ws.send_json({"type": "upload_model", "name": None, "data_b64": None})
        assert ws.receive_json()["level"] == "error"
        ws.send_json({"type": "set_mode", "mode": []})
        assert ws.receive_json()["level"] == "error"
        ws.send_json({"type": ["prompt"]})
        assert ws.receive_json()["message"] == "Unknown message type: ['prompt']"

        ws.send_json({"type": "request_state"})
        state = ws.receive_json()
        assert state["type"] == "state"
        assert state["mode"] == "shader"


def test_websocket_asks_for_key(env, monkeypatch):
    monkeypatch.setattr(main.config, "load_api_key", lambda: None)
    with TestClient(main.app) as client:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "init"
            assert ws.receive_json() == {"type": "api_key_required"}
