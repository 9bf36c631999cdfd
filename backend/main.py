"""
glint backend: FastAPI + WebSocket server.

A text description goes to the completion service, the reply is mined for a
fragment shader, and the shader is hot-swapped into a headless render loop.
Uploaded .glb/.gltf models are rigged with a fixed walk cycle instead.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import config
import workspace
from completion import CompletionClient
from pipeline import ErrorKind, OutcomeStatus, run_shader_request
from render.backend import create_backend
from render.frames import encode_png
from render.surface import RenderSurface
from ws_handlers import HANDLERS, SessionState, publish_outcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.active:
            self.active.remove(ws)

    async def broadcast(self, message: dict):
        data = json.dumps(message)
        dead = []
        for ws in self.active:
            try:
                await ws.send_text(data)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.active.remove(ws)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

def _create_surface(settings: config.Settings) -> RenderSurface | None:
    """Open the GL context and install the built-in shader. None if no GL is available."""
    try:
        backend = create_backend(settings.viewport, gl_backend=settings.gl_backend)
    except Exception:
        logger.exception("Could not create a GL context; shader rendering is disabled")
        return None
    surface = RenderSurface(backend, settings.viewport, max_viewport=settings.max_viewport)
    surface.start()
    return surface


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = config.load_settings()
    workspace.init_workspace(settings.workspace_dir)

    client = CompletionClient(
        config.load_api_key(),
        settings.model,
        max_tokens=settings.max_tokens,
        timeout=settings.request_timeout,
    )
    session = SessionState(
        settings=settings,
        client=client,
        surface=_create_surface(settings),
        manager=ConnectionManager(),
    )
    app.state.session = session

    frame_task = None
    if session.surface is not None:
        frame_task = asyncio.create_task(session.surface.run(settings.fps))

    yield

    if session.prompt_task is not None:
        session.prompt_task.cancel()
    if session.surface is not None:
        session.surface.stop()
        if frame_task is not None:
            frame_task.cancel()
            try:
                await frame_task
            except asyncio.CancelledError:
                pass
        session.surface.close()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="glint", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.load_settings().cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


def _session(request: Request) -> SessionState:
    return request.app.state.session


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------

@app.post("/api/chat")
async def chat(request: Request):
    """Plain pass-through: the prompt goes to the model verbatim."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = {}
    prompt = body.get("prompt") if isinstance(body, dict) else None
    if not isinstance(prompt, str) or not prompt:
        return JSONResponse({"error": "Prompt is required"}, status_code=400)

    result = await _session(request).client.complete(prompt)
    if not result.ok:
        logger.error("Chat request failed: %s", result.error)
        return JSONResponse({"error": "Failed to get response from Claude"}, status_code=500)
    return {"response": result.text}


_OUTCOME_STATUS_CODES = {
    ErrorKind.EMPTY_INPUT: 400,
    ErrorKind.NETWORK_FAILURE: 502,
    ErrorKind.EXTRACTION_MISS: 422,
    ErrorKind.COMPILE_REJECTED: 422,
}


@app.post("/api/shader")
async def generate_shader(request: Request):
    """Run the full describe → generate → extract → swap pipeline."""
    ctx = _session(request)
    if ctx.surface is None:
        return JSONResponse({"error": "Renderer unavailable"}, status_code=503)
    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = {}
    description = body.get("description", "") if isinstance(body, dict) else ""
    if not isinstance(description, str):
        description = ""

    if ctx.busy:
        return JSONResponse(
            {"error": "A shader is already being generated"}, status_code=409,
        )

    ctx.busy = True
    try:
        outcome = await run_shader_request(
            description, client=ctx.client, surface=ctx.surface, tracker=ctx.tracker,
        )
    finally:
        ctx.busy = False

    if outcome.error_kind is not ErrorKind.EMPTY_INPUT:
        await publish_outcome(outcome, ctx)

    if outcome.status is OutcomeStatus.APPLIED:
        status_code = 200
    elif outcome.status is OutcomeStatus.SUPERSEDED:
        status_code = 409
    else:
        status_code = _OUTCOME_STATUS_CODES[outcome.error_kind]
    return JSONResponse(outcome.to_dict(), status_code=status_code)


@app.get("/api/shader")
async def get_shader(request: Request):
    ctx = _session(request)
    if ctx.surface is None:
        return JSONResponse({"error": "Renderer unavailable"}, status_code=503)
    return ctx.surface.snapshot()


@app.get("/api/frame.png")
async def get_frame(request: Request):
    ctx = _session(request)
    if ctx.surface is None:
        return JSONResponse({"error": "Renderer unavailable"}, status_code=503)
    if ctx.surface.latest_frame is None:
        ctx.surface.render_frame()
    if ctx.surface.latest_frame is None:
        return Response(status_code=404)
    png = await asyncio.to_thread(
        encode_png, ctx.surface.latest_frame, ctx.surface.latest_frame_size,
    )
    return Response(content=png, media_type="image/png",
                    headers={"Cache-Control": "no-store"})


@app.get("/api/model")
async def get_model(request: Request):
    ctx = _session(request)
    if ctx.model is None:
        return JSONResponse({"error": "No model loaded"}, status_code=404)
    return ctx.model.to_dict()


@app.get("/api/model/pose")
async def get_model_pose(request: Request):
    ctx = _session(request)
    if ctx.model is None:
        return JSONResponse({"error": "No model loaded"}, status_code=404)
    # The walk cycle shares the render surface's clock when there is one.
    t = ctx.surface.elapsed() if ctx.surface is not None else 0.0
    return ctx.model.rig.pose(t).to_dict()


@app.get("/api/uploads/{filename:path}")
async def get_upload(filename: str):
    """Serve an uploaded file (models, textures)."""
    try:
        data = workspace.read_upload(filename)
        info = workspace.get_upload_info(filename)
        return Response(content=data, media_type=info["mime_type"])
    except (FileNotFoundError, PermissionError):
        return Response(status_code=404)


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    ctx: SessionState = ws.app.state.session
    manager = ctx.manager
    await manager.connect(ws)

    await ws.send_text(json.dumps({"type": "init", **ctx.to_dict()}))
    if not ctx.client.api_key:
        await ws.send_text(json.dumps({"type": "api_key_required"}))

    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_text(json.dumps({
                    "type": "log", "message": "Malformed message", "level": "error",
                }))
                continue
            if not isinstance(msg, dict):
                continue

            msg_type = msg.get("type")
            handler = HANDLERS.get(msg_type) if isinstance(msg_type, str) else None
            if handler is None:
                await ws.send_text(json.dumps({
                    "type": "log",
                    "message": f"Unknown message type: {msg_type!r}",
                    "level": "error",
                }))
                continue
            await handler(ws, msg, ctx)

    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        manager.disconnect(ws)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = config.load_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
