"""WebSocket message handlers for glint.

Each handler is an ``async def handle_xxx(ws, msg, ctx)`` function.
A dispatch table ``HANDLERS`` maps message type strings to handlers.
"""

import asyncio
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import config
import processors
import workspace
from completion import CompletionClient
from pipeline import RequestTracker, OutcomeStatus, PipelineOutcome, run_shader_request
from render.surface import RenderSurface
from rig import LoadedModel, ModelRig

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
MODEL_EXTENSIONS = {".glb", ".gltf"}
MODES = {"shader", "model"}
VIEWS = {"visual", "code"}


# ---------------------------------------------------------------------------
# Session state, owned by the server and passed to every handler
# ---------------------------------------------------------------------------

@dataclass
class SessionState:
    settings: config.Settings
    client: CompletionClient
    surface: RenderSurface | None = None
    manager: object = None  # ConnectionManager instance
    tracker: RequestTracker = field(default_factory=RequestTracker)
    mode: str = "shader"
    view: str = "visual"
    busy: bool = False
    model: LoadedModel | None = None
    prompt_task: asyncio.Task | None = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "view": self.view,
            "busy": self.busy,
            "api_key_set": bool(self.client.api_key),
            "renderer_available": self.surface is not None,
            "shader": self.surface.snapshot() if self.surface else None,
            "model": self.model.to_dict() if self.model else None,
        }


async def _send(ws, msg: dict) -> None:
    await ws.send_text(json.dumps(msg))


async def _log(ctx: SessionState, message: str, level: str = "info") -> None:
    await ctx.manager.broadcast({"type": "log", "message": message, "level": level})


def _text_field(msg: dict, name: str) -> str | None:
    """Return msg[name] if it is a string (missing counts as empty), else None."""
    value = msg.get(name, "")
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Shader prompts
# ---------------------------------------------------------------------------

async def publish_outcome(outcome: PipelineOutcome, ctx: SessionState) -> None:
    """Broadcast the result of one shader request to every client."""
    if outcome.status is OutcomeStatus.SUPERSEDED:
        await _log(ctx, f"Dropped stale response #{outcome.sequence}")
        return

    if outcome.applied:
        ctx.mode = "shader"
        ctx.view = "visual"
        await ctx.manager.broadcast({"type": "shader_applied", **outcome.to_dict()})
    else:
        await ctx.manager.broadcast({"type": "shader_error", **outcome.to_dict()})
    await ctx.manager.broadcast({"type": "assistant_text", "text": outcome.message})


async def _run_prompt(text: str, ctx: SessionState) -> None:
    try:
        outcome = await run_shader_request(
            text, client=ctx.client, surface=ctx.surface, tracker=ctx.tracker,
        )
        await publish_outcome(outcome, ctx)
    except Exception as e:
        logger.exception("Shader request failed")
        await _log(ctx, f"Shader request failed: {e}", "error")
    finally:
        ctx.busy = False
        ctx.prompt_task = None
        await ctx.manager.broadcast({"type": "chat_done"})


async def handle_prompt(ws, msg: dict, ctx: SessionState) -> None:
    text = msg.get("text", "")
    if not isinstance(text, str) or not text.strip():
        return

    if ctx.surface is None:
        await _send(ws, {
            "type": "shader_error",
            "error_kind": None,
            "error": "Renderer unavailable",
            "message": "The renderer could not start on this server.",
        })
        return

    if not ctx.client.api_key:
        await _send(ws, {"type": "api_key_required"})
        return

    if ctx.busy:
        await _send(ws, {
            "type": "log",
            "message": "A shader is already being generated, please wait...",
            "level": "error",
        })
        return

    ctx.busy = True
    await ctx.manager.broadcast({"type": "user_text", "text": text})
    ctx.prompt_task = asyncio.create_task(_run_prompt(text, ctx))


# ---------------------------------------------------------------------------
# Model uploads
# ---------------------------------------------------------------------------

def _sanitize_filename(name: str) -> str:
    """Sanitize a filename: keep alphanumerics, dots, hyphens, underscores."""
    name = Path(name.strip()).name.replace(" ", "_")
    name = re.sub(r"[^\w.\-]", "", name)
    return name.lstrip(".") or "unnamed"


async def load_model_upload(name: str, data_b64: str, ctx: SessionState) -> LoadedModel:
    """Store, process and rig an uploaded model. Raises ValueError with a user-facing message."""
    filename = _sanitize_filename(name)
    if Path(filename).suffix.lower() not in MODEL_EXTENSIONS:
        raise ValueError("Please upload a .glb or .gltf file")

    try:
        raw = base64.b64decode(data_b64, validate=True)
    except (binascii.Error, TypeError):
        raise ValueError(f"File '{filename}' is not valid base64 data")
    if len(raw) > MAX_UPLOAD_SIZE:
        raise ValueError(f"File '{filename}' exceeds 10 MB limit ({len(raw)} bytes)")

    path = workspace.save_upload(filename, raw)
    result = await processors.run_pipeline(path, workspace.get_processed_dir(filename), filename)
    if result is None or not result.ok:
        raise ValueError(result.error if result else f"No processor for {filename}")

    joint_names = result.metadata.get("joint_names", [])
    model = LoadedModel(
        name=filename,
        url=f"/api/uploads/{filename}",
        joint_names=joint_names,
        rig=ModelRig(joint_names),
        warnings=result.warnings,
    )
    ctx.model = model
    ctx.mode = "model"
    ctx.view = "visual"
    # The user moved on: a shader response still in flight must not take over.
    ctx.tracker.invalidate()
    logger.info("Model loaded: %s (%d joints)", filename, len(joint_names))
    return model


async def handle_upload_model(ws, msg: dict, ctx: SessionState) -> None:
    size = msg.get("size", 0)
    if isinstance(size, int) and size > MAX_UPLOAD_SIZE:
        await _log(ctx, f"File exceeds 10 MB limit ({size} bytes)", "error")
        return
    name, data_b64 = _text_field(msg, "name"), _text_field(msg, "data_b64")
    if name is None or data_b64 is None:
        await _log(ctx, "upload_model needs string 'name' and 'data_b64' fields", "error")
        return
    try:
        model = await load_model_upload(name, data_b64, ctx)
    except ValueError as e:
        await _log(ctx, str(e), "error")
        return
    await ctx.manager.broadcast({"type": "model_loaded", "model": model.to_dict()})


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------

async def handle_set_mode(ws, msg: dict, ctx: SessionState) -> None:
    mode = msg.get("mode")
    if not isinstance(mode, str) or mode not in MODES:
        await _log(ctx, f"Unknown mode: {mode!r}", "error")
        return
    if mode != ctx.mode:
        ctx.mode = mode
        ctx.tracker.invalidate()
    await ctx.manager.broadcast({"type": "state", **ctx.to_dict()})


async def handle_set_view(ws, msg: dict, ctx: SessionState) -> None:
    view = msg.get("view")
    if not isinstance(view, str) or view not in VIEWS:
        await _log(ctx, f"Unknown view: {view!r}", "error")
        return
    ctx.view = view
    await _send(ws, {"type": "state", **ctx.to_dict()})


async def handle_resize(ws, msg: dict, ctx: SessionState) -> None:
    if ctx.surface is None:
        return
    try:
        ctx.surface.resize(int(msg.get("width", 0)), int(msg.get("height", 0)))
    except (TypeError, ValueError) as e:
        await _log(ctx, f"Ignoring resize: {e}", "error")


async def handle_request_state(ws, msg: dict, ctx: SessionState) -> None:
    await _send(ws, {"type": "state", **ctx.to_dict()})


async def handle_set_api_key(ws, msg: dict, ctx: SessionState) -> None:
    key = _text_field(msg, "key")
    if key is None:
        await _send(ws, {"type": "api_key_invalid", "error": "API key must be a string"})
        return
    key = key.strip()
    valid, error = await config.validate_api_key(key, ctx.settings.model)
    if valid:
        config.save_api_key(key)
        ctx.client.set_api_key(key)
        await _send(ws, {"type": "api_key_valid"})
    else:
        await _send(ws, {"type": "api_key_invalid", "error": error})


HANDLERS = {
    "prompt": handle_prompt,
    "upload_model": handle_upload_model,
    "set_mode": handle_set_mode,
    "set_view": handle_set_view,
    "resize": handle_resize,
    "request_state": handle_request_state,
    "set_api_key": handle_set_api_key,
}
