"""
3D model processor: .gltf/.glb to skeleton.json.

Only the scene graph is read (JSON chunk); vertex data stays with the
browser-side loader. Joints are the nodes referenced by any skin, which is
what a glTF loader turns into bones.
"""

import json
import logging
import struct
from pathlib import Path

from processors import BaseProcessor, ProcessedOutput, ProcessorResult

logger = logging.getLogger(__name__)

_GLB_MAGIC = 0x46546C67        # "glTF"
_CHUNK_JSON = 0x4E4F534A       # "JSON"
_MAX_JOINTS = 256


def read_glb_json(data: bytes) -> dict:
    """Return the JSON chunk of a binary glTF container."""
    if len(data) < 12:
        raise ValueError("GLB file too small")
    magic, version, length = struct.unpack_from("<III", data, 0)
    if magic != _GLB_MAGIC:
        raise ValueError("Not a valid GLB file")
    if version != 2:
        raise ValueError(f"Unsupported GLB version {version}")

    offset = 12
    end = min(length, len(data))
    while offset + 8 <= end:
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        if chunk_type == _CHUNK_JSON:
            return json.loads(data[offset:offset + chunk_length].decode("utf-8"))
        offset += chunk_length
    raise ValueError("No JSON chunk in GLB")


def extract_skeleton(gltf: dict) -> dict:
    """Collect skin joints with their names and nearest joint parent."""
    nodes = gltf.get("nodes", [])
    parents: dict[int, int] = {}
    for i, node in enumerate(nodes):
        for child in node.get("children", []):
            parents[child] = i

    joint_nodes: list[int] = []
    for skin in gltf.get("skins", []):
        for node_idx in skin.get("joints", []):
            if node_idx not in joint_nodes and 0 <= node_idx < len(nodes):
                joint_nodes.append(node_idx)

    joint_index = {node_idx: i for i, node_idx in enumerate(joint_nodes)}
    joints = []
    for node_idx in joint_nodes[:_MAX_JOINTS]:
        parent = parents.get(node_idx)
        seen = {node_idx}
        while parent is not None and parent not in joint_index:
            if parent in seen:
                raise ValueError("Node hierarchy contains a cycle")
            seen.add(parent)
            parent = parents.get(parent)
        joints.append({
            "name": nodes[node_idx].get("name", f"joint_{joint_index[node_idx]}"),
            "node": node_idx,
            "parent": joint_index.get(parent, -1) if parent is not None else -1,
        })

    return {
        "joints": joints,
        "node_count": len(nodes),
        "mesh_count": len(gltf.get("meshes", [])),
        "skin_count": len(gltf.get("skins", [])),
        "animation_count": len(gltf.get("animations", [])),
        "truncated": len(joint_nodes) > _MAX_JOINTS,
    }


class Model3DProcessor(BaseProcessor):
    name = "3D Model Processor"
    supported_extensions = {".gltf", ".glb"}

    @classmethod
    def process(cls, source_path: Path, output_dir: Path,
                filename: str) -> ProcessorResult:
        ext = source_path.suffix.lower()
        try:
            if ext == ".glb":
                gltf = read_glb_json(source_path.read_bytes())
            else:
                gltf = json.loads(source_path.read_text(encoding="utf-8"))
            skeleton = extract_skeleton(gltf)
        except (ValueError, struct.error, UnicodeDecodeError) as e:
            return ProcessorResult(
                source_filename=filename,
                processor_name=cls.name,
                status="error",
                error=f"Parse error: {e}",
            )

        warnings = []
        names = [j["name"] for j in skeleton["joints"]]
        logger.info("Parsed %s: %d nodes, %d joints", filename,
                    skeleton["node_count"], len(names))
        if not names:
            warnings.append("No skinned joints found; the model will only turn")
        if len(set(names)) != len(names):
            warnings.append("Duplicate joint names; only the first of each is animated")
        if skeleton["truncated"]:
            warnings.append(f"Skeleton truncated to {_MAX_JOINTS} joints")

        (output_dir / "skeleton.json").write_text(json.dumps(skeleton, indent=2))

        return ProcessorResult(
            source_filename=filename,
            processor_name=cls.name,
            status="partial" if warnings else "success",
            outputs=[ProcessedOutput(
                "skeleton.json",
                f"Skeleton ({len(names)} joints)",
                "application/json",
            )],
            metadata={
                "joint_names": names,
                "node_count": skeleton["node_count"],
                "mesh_count": skeleton["mesh_count"],
                "skin_count": skeleton["skin_count"],
                "animation_count": skeleton["animation_count"],
            },
            warnings=warnings,
        )
