from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from docstore.storage import MissingBlobError, S3BlobStore, StorageError

pytestmark = pytest.mark.storage


def test_put_object_uses_conditional_write(s3_store, s3_client):
    assert s3_store.put_object("documents_v1/" + "a" * 64, b"pdf", "application/pdf") is True
    assert s3_store.put_object("documents_v1/" + "a" * 64, b"pdf") is False

    assert s3_client.content_types["documents_v1/" + "a" * 64] == "application/pdf"


def test_put_object_without_condition_overwrites(s3_store, s3_client):
    s3_store.put_object("a/b", b"one")

    assert s3_store.put_object("a/b", b"two", if_absent=False) is True
    assert s3_client.objects["a/b"] == b"two"


def test_get_object_reads_body_and_maps_missing(s3_store):
    s3_store.put_object("a/b", b"content")

    assert s3_store.get_object("a/b") == b"content"
    with pytest.raises(MissingBlobError):
        s3_store.get_object("a/missing")


def test_range_past_the_end_is_empty(s3_store):
    s3_store.put_object("a/text", b"hello world")

    assert s3_store.get_object_range("a/text", 6, 10) == b"world"
    assert s3_store.get_object_range("a/text", 100, 200) == b""
    with pytest.raises(MissingBlobError):
        s3_store.get_object_range("a/missing", 0, 1)


def test_list_objects_paginates_and_respects_directory_prefix(s3_store, s3_client):
    for name in ("0001__A.mp3", "0002__B.mp3", "0003__C.mp3", "audiobook.meta.json"):
        s3_store.put_object(f"audiobooks_v1/b1-audiobook/{name}", b"x")
    s3_store.put_object("audiobooks_v1/b10-audiobook/0001__Z.mp3", b"x")

    keys = s3_store.list_objects("audiobooks_v1/b1-audiobook")

    assert keys == [
        "audiobooks_v1/b1-audiobook/0001__A.mp3",
        "audiobooks_v1/b1-audiobook/0002__B.mp3",
        "audiobooks_v1/b1-audiobook/0003__C.mp3",
        "audiobooks_v1/b1-audiobook/audiobook.meta.json",
    ]
    assert s3_store.list_objects("audiobooks_v1/missing") == []


def test_key_prefix_is_applied_and_stripped(s3_client):
    store = S3BlobStore(bucket="test-bucket", client=s3_client, key_prefix="/tenant/")
    store.put_object("documents_v1/doc", b"x")

    assert "tenant/documents_v1/doc" in s3_client.objects
    assert store.list_objects("documents_v1") == ["documents_v1/doc"]
    assert store.list_objects("") == ["documents_v1/doc"]


def test_delete_object_reports_missing(s3_store):
    s3_store.put_object("a/b", b"x")

    assert s3_store.delete_object("a/b") is True
    assert s3_store.delete_object("a/b") is False
    assert s3_store.object_exists("a/b") is False


def test_presign_get_returns_expiring_url(s3_client):
    store = S3BlobStore(bucket="test-bucket", client=s3_client, presign_expires=120)

    assert store.presign_get("a/b") == "https://fake-s3.test/test-bucket/a/b?expires=120"
    assert store.presign_get("a/b", expires_in=30).endswith("expires=30")


def test_move_prefix_copies_then_deletes_and_skips_existing(s3_store, s3_client):
    s3_store.put_object("src/one.mp3", b"one")
    s3_store.put_object("src/two.mp3", b"two")
    s3_store.put_object("dst/two.mp3", b"existing")

    result = s3_store.move_prefix("src", "dst")

    assert (result.moved, result.skipped) == (1, 1)
    assert s3_client.objects["dst/one.mp3"] == b"one"
    assert s3_client.objects["dst/two.mp3"] == b"existing"
    assert "src/one.mp3" not in s3_client.objects
    assert s3_client.objects["src/two.mp3"] == b"two"


def test_unexpected_client_errors_become_storage_errors(s3_client):
    def denied(**_kwargs):
        raise ClientError(
            {"Error": {"Code": "AccessDenied"}, "ResponseMetadata": {"HTTPStatusCode": 403}},
            "PutObject",
        )

    s3_client.put_object = denied
    store = S3BlobStore(bucket="test-bucket", client=s3_client)

    with pytest.raises(StorageError, match="AccessDenied"):
        store.put_object("a/b", b"x")
