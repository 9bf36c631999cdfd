"""
Configuration for glint.

The Anthropic API key lives in backend/.env (python-dotenv). Runtime knobs
come from GLINT_* environment variables, read once into a frozen Settings.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv, set_key
import anthropic

ENV_PATH = Path(__file__).resolve().parent / ".env"

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_WORKSPACE_DIR = Path(__file__).resolve().parent.parent / ".workspace"


@dataclass(frozen=True)
class Settings:
    model: str = DEFAULT_MODEL
    max_tokens: int = 1024
    request_timeout: float = 60.0
    viewport: tuple[int, int] = (640, 360)
    fps: float = 30.0
    max_viewport: int = 4096
    gl_backend: str | None = None  # moderngl context backend, e.g. "egl"; None tries EGL first
    workspace_dir: Path = DEFAULT_WORKSPACE_DIR
    cors_origins: tuple[str, ...] = ("*",)
    host: str = "127.0.0.1"
    port: int = 8000


def _parse_viewport(raw: str) -> tuple[int, int]:
    """Parse 'WIDTHxHEIGHT' into a pair of positive ints."""
    width, sep, height = raw.lower().partition("x")
    if not sep:
        raise ValueError(f"GLINT_VIEWPORT must look like 640x360, got {raw!r}")
    w, h = int(width), int(height)
    if w <= 0 or h <= 0:
        raise ValueError(f"GLINT_VIEWPORT must be positive, got {raw!r}")
    return w, h


def load_settings() -> Settings:
    """Build Settings from the environment (after loading backend/.env)."""
    load_dotenv(ENV_PATH)
    env = os.environ
    defaults = Settings()
    origins = env.get("GLINT_CORS_ORIGINS")
    return Settings(
        model=env.get("GLINT_MODEL", defaults.model),
        max_tokens=int(env.get("GLINT_MAX_TOKENS", defaults.max_tokens)),
        request_timeout=float(env.get("GLINT_REQUEST_TIMEOUT", defaults.request_timeout)),
        viewport=(
            _parse_viewport(env["GLINT_VIEWPORT"])
            if "GLINT_VIEWPORT" in env else defaults.viewport
        ),
        fps=float(env.get("GLINT_FPS", defaults.fps)),
        max_viewport=int(env.get("GLINT_MAX_VIEWPORT", defaults.max_viewport)),
        gl_backend=env.get("GLINT_GL_BACKEND") or defaults.gl_backend,
        workspace_dir=Path(env.get("GLINT_WORKSPACE_DIR", defaults.workspace_dir)),
        cors_origins=(
            tuple(o.strip() for o in origins.split(",") if o.strip())
            if origins else defaults.cors_origins
        ),
        host=env.get("GLINT_HOST", defaults.host),
        port=int(env.get("GLINT_PORT", defaults.port)),
    )


def load_api_key() -> str | None:
    """Load ANTHROPIC_API_KEY from backend/.env into os.environ. Returns the key or None."""
    load_dotenv(ENV_PATH, override=True)
    return os.environ.get("ANTHROPIC_API_KEY")


def save_api_key(key: str) -> None:
    """Persist the API key to backend/.env and set it in the current process."""
    ENV_PATH.touch(exist_ok=True)
    set_key(str(ENV_PATH), "ANTHROPIC_API_KEY", key)
    os.environ["ANTHROPIC_API_KEY"] = key


async def validate_api_key(key: str, model: str = DEFAULT_MODEL) -> tuple[bool, str]:
    """Make a one-token Messages call to verify the key. Returns (valid, error_message)."""
    if not key:
        return False, "API key is empty"
    try:
        client = anthropic.AsyncAnthropic(api_key=key, max_retries=0)
        await client.messages.create(
            model=model,
            max_tokens=1,
            messages=[{"role": "user", "content": "hi"}],
        )
        return True, ""
    except anthropic.AuthenticationError:
        return False, "Invalid API key"
    except anthropic.APIConnectionError:
        return False, "Could not connect to Anthropic API"
    except anthropic.APIError as e:
        return False, str(e)
