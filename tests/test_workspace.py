import pytest

import workspace


@pytest.fixture(autouse=True)
def sandbox(tmp_path):
    workspace.init_workspace(tmp_path / "ws")
    return tmp_path / "ws"


def test_init_creates_uploads_dir(sandbox):
    assert workspace.get_workspace_dir() == sandbox
    assert (sandbox / "uploads").is_dir()


def test_save_and_read_upload(sandbox):
    path = workspace.save_upload("robot.glb", b"glTF....")
    assert path == (sandbox / "uploads" / "robot.glb").resolve()
    assert workspace.read_upload("robot.glb") == b"glTF...."

    info = workspace.get_upload_info("robot.glb")
    assert info == {"filename": "robot.glb", "size": 8, "mime_type": "model/gltf-binary"}


def test_gltf_mime_type():
    workspace.save_upload("scene.gltf", b"{}")
    assert workspace.get_upload_info("scene.gltf")["mime_type"] == "model/gltf+json"


def test_processed_dir_naming(sandbox):
    assert workspace.get_processed_dir("robot.glb") == sandbox / "uploads" / "processed" / "robot_glb"


@pytest.mark.parametrize("name", ["../escape.glb", "../../etc/passwd", "/etc/passwd"])
def test_traversal_is_rejected(name):
    with pytest.raises(PermissionError):
        workspace.save_upload(name, b"x")
    with pytest.raises(PermissionError):
        workspace.read_upload(name)


def test_missing_upload():
    with pytest.raises(FileNotFoundError):
        workspace.read_upload("nothing.glb")
