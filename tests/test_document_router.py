import time

import pytest
from fastapi.testclient import TestClient

from server.api_server import create_app

HEADERS = {"X-API-Key": "test-key", "X-User-Id": "owner-a"}


@pytest.fixture
def client(env, backends):
    with TestClient(create_app(http_transport=backends.transport())) as test_client:
        yield test_client


def _wait_until_settled(client: TestClient, document_id: str, headers: dict = HEADERS, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        document = client.get(f"/documents/{document_id}", headers=headers).json()
        if document["status"] != "processing" or time.monotonic() > deadline:
            return document
        time.sleep(0.02)


def _upload(client: TestClient, filename: str, body: bytes, content_type: str | None = "text/plain", headers: dict = HEADERS):
    params = {"filename": filename}
    if content_type:
        params["type"] = content_type
    return client.post("/documents/upload", params=params, content=body, headers=headers)


def test_healthz(client):
    assert client.get("/healthz").json()["status"] == "ok"


def test_requests_without_api_key_are_rejected(client):
    assert client.get("/documents", headers={"X-User-Id": "owner-a"}).status_code == 401
    assert client.get("/documents", headers={"X-API-Key": "wrong", "X-User-Id": "owner-a"}).status_code == 401


def test_requests_without_user_are_rejected(client):
    assert client.get("/documents", headers={"X-API-Key": "test-key"}).status_code == 401


def test_upload_is_processed_in_the_background(client, backends):
    response = _upload(client, "notes.txt", ("abcde " * 750).encode("utf-8"))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processing"

    document = _wait_until_settled(client, body["id"])
    assert document["status"] == "completed"
    assert document["title"] == "notes.txt"
    assert document["metadata"] == {"size": 4500, "content_type": "text/plain"}
    assert len([p for p in backends.qdrant.points() if p["payload"]["document_id"] == body["id"]]) == 3


def test_list_is_newest_first_and_per_owner(client):
    first = _upload(client, "first.txt", b"first").json()["id"]
    time.sleep(0.01)
    second = _upload(client, "second.txt", b"second").json()["id"]
    _upload(client, "foreign.txt", b"foreign", headers={**HEADERS, "X-User-Id": "owner-b"})

    listed = client.get("/documents", headers=HEADERS).json()

    assert [document["id"] for document in listed] == [second, first]


def test_type_is_guessed_from_filename(client):
    document_id = _upload(client, "readme.md", b"# Title\n\nBody", content_type=None).json()["id"]

    document = _wait_until_settled(client, document_id)

    assert document["metadata"]["content_type"] == "text/markdown"
    assert document["status"] == "completed"


@pytest.mark.parametrize(
    ("filename", "content_type"),
    [("", "text/plain"), ("image.png", "image/png"), ("archive.bin", None)],
)
def test_invalid_uploads_are_rejected_before_a_row_exists(client, filename, content_type):
    response = _upload(client, filename, b"data", content_type=content_type)

    assert response.status_code == 400
    assert client.get("/documents", headers=HEADERS).json() == []


def test_oversized_upload_is_rejected(env, backends, monkeypatch):
    monkeypatch.setenv("INGEST_MAX_UPLOAD_BYTES", "10")

    with TestClient(create_app(http_transport=backends.transport())) as client:
        response = _upload(client, "big.txt", b"x" * 11)
        listed = client.get("/documents", headers=HEADERS).json()

    assert response.status_code == 400
    assert "File too large" in response.json()["detail"]
    assert listed == []


def test_query_returns_only_the_callers_chunks(client):
    own = _upload(client, "own.txt", b"shared words in both files").json()["id"]
    foreign = _upload(client, "foreign.txt", b"shared words in both files", headers={**HEADERS, "X-User-Id": "owner-b"}).json()["id"]
    _wait_until_settled(client, own)
    _wait_until_settled(client, foreign, headers={**HEADERS, "X-User-Id": "owner-b"})

    response = client.post("/query", json={"query": "shared words in both files", "limit": 10}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["results"][0]["source_document_id"] == own
    assert body["results"][0]["title"] == "own.txt"


def test_delete_removes_the_document(client, backends):
    document_id = _upload(client, "notes.txt", b"to be deleted").json()["id"]
    _wait_until_settled(client, document_id)

    response = client.delete("/documents", params={"id": document_id}, headers=HEADERS)

    assert response.json() == {"success": True}
    assert client.get(f"/documents/{document_id}", headers=HEADERS).status_code == 404
    assert client.get("/documents", headers=HEADERS).json() == []
    assert [p for p in backends.qdrant.points() if p["payload"]["document_id"] == document_id] == []


def test_delete_errors(client):
    document_id = _upload(client, "notes.txt", b"mine").json()["id"]
    _wait_until_settled(client, document_id)

    assert client.delete("/documents", headers=HEADERS).status_code == 400
    assert client.delete("/documents", params={"id": "unknown"}, headers=HEADERS).status_code == 404
    foreign_headers = {**HEADERS, "X-User-Id": "owner-b"}
    assert client.delete("/documents", params={"id": document_id}, headers=foreign_headers).status_code == 404
