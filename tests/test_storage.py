import pytest

from bonsbras.storage.local_provider import LocalStorageProvider
from bonsbras.storage.provider import StorageConflictError, clean_path


def test_local_upload_conflict_and_upsert(tmp_path):
    storage = LocalStorageProvider(base_dir=str(tmp_path))
    url = storage.upload("avatars", "u1/avatar.png", b"one", "image/png")
    assert url.endswith("/storage/avatars/u1/avatar.png")
    assert (tmp_path / "avatars" / "u1" / "avatar.png").read_bytes() == b"one"

    with pytest.raises(StorageConflictError):
        storage.upload("avatars", "u1/avatar.png", b"two", "image/png")
    storage.upload("avatars", "u1/avatar.png", b"two", "image/png", upsert=True)
    assert (tmp_path / "avatars" / "u1" / "avatar.png").read_bytes() == b"two"


def test_local_public_url_and_delete(tmp_path):
    storage = LocalStorageProvider(base_dir=str(tmp_path))
    assert storage.get_public_url("portfolio", "u1/a.png") is None
    storage.upload("portfolio", "u1/a.png", b"x", "image/png")
    assert storage.exists("portfolio", "u1/a.png")
    assert storage.get_public_url("portfolio", "u1/a.png").endswith("/storage/portfolio/u1/a.png")

    storage.delete("portfolio", "u1/a.png")
    storage.delete("portfolio", "u1/a.png")
    assert not storage.exists("portfolio", "u1/a.png")


def test_paths_cannot_escape_the_bucket():
    assert clean_path("/../../etc/passwd") == "etc/passwd"
    assert clean_path("u1/../../secret.png") == "u1/secret.png"
    assert clean_path("u1\\photos/./a.png") == "u1/photos/a.png"
