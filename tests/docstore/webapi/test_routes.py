"""Route tests for the docstore API."""

from __future__ import annotations

import hashlib
from contextlib import contextmanager
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from docstore.services import FormatMismatchError, SettingsMismatchError
from docstore.webapi import create_app
from docstore.webapi.dependencies import get_context

pytestmark = pytest.mark.webapi

PDF = b"%PDF-1.7 api"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@contextmanager
def _client_for(context) -> Iterator[TestClient]:
    app = create_app()
    app.dependency_overrides[get_context] = lambda: context
    with TestClient(app, follow_redirects=False) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def client(context) -> Iterator[TestClient]:
    with _client_for(context) as client:
        yield client


@pytest.fixture
def auth_context(make_context):
    return make_context(auth_enabled=True)


@pytest.fixture
def auth_client(auth_context) -> Iterator[TestClient]:
    with _client_for(auth_context) as client:
        yield client


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

def test_healthcheck(client):
    assert client.get("/_health").json() == {"status": "ok"}


def test_layout_migration_without_body(client):
    response = client.post("/api/migrations/v1")

    assert response.status_code == 200
    payload = response.json()
    assert payload["documentsReady"] is True
    assert payload["audiobooksReady"] is True
    assert payload["rekey"] == {"renamed": 0, "merged": 0, "skipped": 0}


def test_layout_migration_rekeys_books(client, docstore_root):
    book = docstore_root / "audiobooks_v1" / "old-audiobook"
    book.mkdir(parents=True)
    (book / "0001__A.mp3").write_bytes(b"a")

    response = client.post("/api/migrations/v1", json={"mappings": [{"oldId": "old", "id": "new"}]})

    assert response.status_code == 200
    assert response.json()["rekey"]["renamed"] == 1
    assert (docstore_root / "audiobooks_v1" / "new-audiobook" / "0001__A.mp3").exists()


def test_layout_migration_rejects_unsafe_ids(client):
    response = client.post("/api/migrations/v1", json={"mappings": [{"oldId": "old", "id": "../x"}]})

    assert response.status_code == 400


def test_object_storage_migration_requires_s3(client):
    response = client.post("/api/migrations/v2", json={"dryRun": True})

    assert response.status_code == 409
    assert "S3 is not configured" in response.json()["detail"]


def test_object_storage_migration_uploads(make_context, s3_settings, s3_client, docstore_root):
    documents = docstore_root / "documents_v1"
    documents.mkdir()
    digest = hashlib.sha256(PDF).hexdigest()
    (documents / f"{digest}__Book.pdf").write_bytes(PDF)
    context = make_context(base=s3_settings, s3_client=s3_client)

    with _client_for(context) as client:
        response = client.post("/api/migrations/v2", json={"deleteLocal": False})

    assert response.status_code == 200
    assert response.json()["uploaded"] == 1
    assert f"documents_v1/{digest}" in s3_client.objects


def test_object_storage_migration_runs_with_a_kept_malformed_sidecar(
    make_context, s3_settings, s3_client, docstore_root
):
    book = docstore_root / "audiobooks_v1" / "b1-audiobook"
    book.mkdir(parents=True)
    (book / "7.meta.json").write_text("not json", encoding="utf-8")
    documents = docstore_root / "documents_v1"
    documents.mkdir()
    digest = hashlib.sha256(PDF).hexdigest()
    (documents / f"{digest}__Book.pdf").write_bytes(PDF)
    context = make_context(base=s3_settings, s3_client=s3_client)

    with _client_for(context) as client:
        response = client.post("/api/migrations/v2", json={"deleteLocal": False})

    assert response.status_code == 200
    assert response.json()["uploaded"] == 1
    assert (book / "7.meta.json").exists()


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

def test_claim_requires_a_user_when_auth_is_disabled(client):
    assert client.post("/api/user/claim").status_code == 401


def test_claim_rejects_missing_and_unsafe_user_ids(auth_client):
    assert auth_client.post("/api/user/claim").status_code == 401
    assert auth_client.post("/api/user/claim", headers={"X-User-Id": "bad/id"}).status_code == 400


def test_scan_then_claim(auth_client, auth_context):
    auth_context.audiobooks.store_chapter("b1", b"one", title="A")

    scan = auth_client.post("/api/user/claim", json={"action": "scan"}, headers={"X-User-Id": "alice"})
    assert scan.status_code == 200
    assert scan.json() == {"success": True, "unclaimed": {"documents": 0, "audiobooks": 1}}

    claim = auth_client.post("/api/user/claim", headers={"X-User-Id": "alice"})
    assert claim.status_code == 200
    assert claim.json()["claimed"] == {"documents": 0, "audiobooks": 1, "failed": 0}
    assert auth_context.repository.get_audiobook("b1", "alice") is not None

    status = auth_client.get("/api/audiobook/status", params={"bookId": "b1"}, headers={"X-User-Id": "alice"})
    assert [c["fileName"] for c in status.json()["chapters"]] == ["0001__A.m4b"]


# ---------------------------------------------------------------------------
# Audiobooks
# ---------------------------------------------------------------------------

def test_status_reports_chapters(client, context):
    context.audiobooks.store_chapter("b1", b"one", title="Intro", format="mp3")

    response = client.get("/api/audiobook/status", params={"bookId": "b1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["exists"] is True
    assert payload["nextIndex"] == 1
    assert payload["hasComplete"] is False
    assert payload["chapters"][0]["title"] == "Intro"


def test_status_validates_book_id(client):
    assert client.get("/api/audiobook/status", params={"bookId": "bad id"}).status_code == 400
    assert client.get("/api/audiobook/status").status_code == 422


def test_status_when_layout_is_not_migrated(client, docstore_root):
    book = docstore_root / "audiobooks_v1" / "b1-audiobook"
    book.mkdir(parents=True)
    (book / "0.meta.json").write_text("{", encoding="utf-8")
    client.post("/api/migrations/v1")

    assert client.get("/api/audiobook/status", params={"bookId": "b1"}).status_code == 409


def test_download_chapter_bytes(client, context):
    context.audiobooks.store_chapter("b1", b"chapter bytes", title="Intro Part", format="mp3")

    response = client.get("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": 0})

    assert response.status_code == 200
    assert response.content == b"chapter bytes"
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["content-disposition"] == 'attachment; filename="intro_part.mp3"'


def test_download_chapter_redirects_to_presigned_url(make_context, s3_settings, s3_client):
    context = make_context(base=s3_settings, s3_client=s3_client)
    context.audiobooks.store_chapter("b1", b"bytes", title="Intro", format="mp3")

    with _client_for(context) as client:
        response = client.get("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": 0})

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://fake-s3.test/test-bucket/")


def test_download_missing_chapter(client, context):
    context.audiobooks.store_chapter("b1", b"one", title="A")

    assert client.get("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": 4}).status_code == 404
    assert client.get("/api/audiobook/chapter", params={"bookId": "zz", "chapterIndex": 0}).status_code == 404
    assert client.get("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": -1}).status_code == 422


def test_delete_chapter_and_reset(client, context):
    context.audiobooks.store_chapter("b1", b"one", title="A")
    context.audiobooks.store_chapter("b1", b"two", title="B")

    deleted = client.delete("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": 0})
    assert deleted.json() == {"success": True, "deleted": 1}

    reset = client.delete("/api/audiobook", params={"bookId": "b1"})
    assert reset.json() == {"success": True, "deleted": 1}
    assert client.get("/api/audiobook/status", params={"bookId": "b1"}).json()["exists"] is False


def test_delete_chapter_of_unknown_book(client):
    client.post("/api/migrations/v1")

    assert client.delete("/api/audiobook/chapter", params={"bookId": "b1", "chapterIndex": 0}).status_code == 404


def test_settings_mismatch_maps_to_conflict(context):
    app = create_app()
    app.dependency_overrides[get_context] = lambda: context

    def conflicting():
        raise SettingsMismatchError({"voice": "alloy"})

    app.add_api_route("/api/_conflict", conflicting)
    with TestClient(app) as client:
        response = client.get("/api/_conflict")

    assert response.status_code == 409
    assert response.json() == {"error": "Audiobook settings mismatch", "settings": {"voice": "alloy"}}


def test_format_mismatch_maps_to_conflict(context):
    app = create_app()
    app.dependency_overrides[get_context] = lambda: context

    def mismatched():
        raise FormatMismatchError("m4b", "mp3")

    app.add_api_route("/api/_format", mismatched)
    with TestClient(app) as client:
        response = client.get("/api/_format")

    assert response.status_code == 409
    assert response.json()["format"] == "m4b"
