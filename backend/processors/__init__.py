"""
Asset processing for uploaded models.

Processors turn a raw upload into derivatives the viewer can use directly
(for 3D scenes: the skeleton). Results are cached in a manifest.json next to
the derivatives, keyed on a SHA-256 of the source file.
"""

import asyncio
import hashlib
import importlib
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class ProcessedOutput:
    filename: str       # e.g. "skeleton.json"
    description: str
    mime_type: str
    size: int = 0


@dataclass
class ProcessorResult:
    source_filename: str
    processor_name: str
    status: str  # "success" | "partial" | "error"
    outputs: list[ProcessedOutput] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("success", "partial")


class BaseProcessor:
    name: str = "base"
    supported_extensions: set[str] = set()

    @classmethod
    def process(cls, source_path: Path, output_dir: Path, filename: str) -> ProcessorResult:
        """Process a file and write outputs to output_dir. Runs in a worker thread."""
        raise NotImplementedError


_registry: list[type[BaseProcessor]] = []

_PROCESSOR_MODULES = [
    "processors.model3d",
]


def _auto_register() -> None:
    for module_name in _PROCESSOR_MODULES:
        mod = importlib.import_module(module_name)
        for attr in vars(mod).values():
            if (
                isinstance(attr, type)
                and issubclass(attr, BaseProcessor)
                and attr is not BaseProcessor
                and attr not in _registry
            ):
                _registry.append(attr)
                logger.info("Processor registered: %s", attr.name)


def get_processor(filename: str) -> type[BaseProcessor] | None:
    """Find a processor for the given filename by extension."""
    ext = Path(filename).suffix.lower()
    for proc in _registry:
        if ext in proc.supported_extensions:
            return proc
    return None


def supported_extensions() -> set[str]:
    return {ext for proc in _registry for ext in proc.supported_extensions}


async def run_pipeline(source_path: Path, output_dir: Path, filename: str) -> ProcessorResult | None:
    """Process one upload. Returns None if no processor handles its extension."""
    proc = get_processor(filename)
    if proc is None:
        return None

    manifest_path = output_dir / "manifest.json"
    cached = _read_cached(manifest_path, source_path)
    if cached is not None:
        logger.info("Cache hit for %s, skipping processing", filename)
        return cached

    output_dir.mkdir(parents=True, exist_ok=True)
    try:
        result = await asyncio.to_thread(proc.process, source_path, output_dir, filename)
    except Exception as e:
        logger.error("Processor %s failed for %s: %s", proc.name, filename, e)
        result = ProcessorResult(
            source_filename=filename,
            processor_name=proc.name,
            status="error",
            error=str(e),
        )

    for out in result.outputs:
        out_path = output_dir / out.filename
        if out_path.exists():
            out.size = out_path.stat().st_size

    if result.ok:
        manifest = asdict(result)
        manifest["source_sha256"] = _file_digest(source_path)
        manifest_path.write_text(json.dumps(manifest, indent=2))

    logger.info("%s: %s%s", proc.name, result.status,
                f" ({result.error})" if result.error else "")
    return result


def _file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _read_cached(manifest_path: Path, source_path: Path) -> ProcessorResult | None:
    if not manifest_path.exists():
        return None
    try:
        manifest = json.loads(manifest_path.read_text())
    except (OSError, json.JSONDecodeError):
        return None
    if manifest.pop("source_sha256", None) != _file_digest(source_path):
        return None
    manifest["outputs"] = [ProcessedOutput(**o) for o in manifest.get("outputs", [])]
    return ProcessorResult(**manifest)


_auto_register()
