import asyncio

import pytest

from shared.clients.blob.local.BlobClientLocal import BlobClientLocal


@pytest.fixture
def blob_client(helper_config, monkeypatch, tmp_path) -> BlobClientLocal:
    monkeypatch.setenv("BLOB_LOCAL_ROOT_PATH", str(tmp_path / "blobs"))
    return BlobClientLocal(helper_config)


def test_store_writes_file_and_delete_removes_it(blob_client, tmp_path):
    async def scenario():
        url = await blob_client.do_store("doc-1/notes.txt", b"hello", "text/plain")
        written = (tmp_path / "blobs" / "doc-1" / "notes.txt").read_bytes()
        await blob_client.do_delete(url)
        return url, written

    url, written = asyncio.run(scenario())

    assert url.startswith("file://")
    assert written == b"hello"
    assert not (tmp_path / "blobs" / "doc-1" / "notes.txt").exists()


def test_deleting_a_missing_blob_is_a_no_op(blob_client, tmp_path):
    url = (tmp_path / "blobs" / "doc-1" / "gone.txt").resolve().as_uri()
    asyncio.run(blob_client.do_delete(url))


def test_names_outside_the_root_are_rejected(blob_client):
    with pytest.raises(ValueError):
        asyncio.run(blob_client.do_store("../escape.txt", b"x", "text/plain"))


def test_public_base_url(helper_config, monkeypatch, tmp_path):
    monkeypatch.setenv("BLOB_LOCAL_ROOT_PATH", str(tmp_path / "blobs"))
    monkeypatch.setenv("BLOB_LOCAL_PUBLIC_BASE_URL", "https://files.example.com/uploads/")
    blob_client = BlobClientLocal(helper_config)

    async def scenario():
        url = await blob_client.do_store("doc-1/notes.txt", b"hello", "text/plain")
        await blob_client.do_delete(url)
        return url

    assert asyncio.run(scenario()) == "https://files.example.com/uploads/doc-1/notes.txt"
    assert not (tmp_path / "blobs" / "doc-1" / "notes.txt").exists()
