from __future__ import annotations

import threading

import pytest

from docstore.storage import BlobConflictError, InvalidKeyError, MissingBlobError, OperationCancelled
from docstore.storage.local import normalize_key

pytestmark = pytest.mark.storage


def test_put_object_is_write_once(local_store, docstore_root):
    assert local_store.put_object("documents_v1/abc", b"payload") is True
    assert local_store.put_object("documents_v1/abc", b"payload") is False
    with pytest.raises(BlobConflictError):
        local_store.put_object("documents_v1/abc", b"other")

    assert (docstore_root / "documents_v1" / "abc").read_bytes() == b"payload"


def test_put_object_overwrites_when_not_write_once(local_store):
    local_store.put_object("a/b.bin", b"one")

    assert local_store.put_object("a/b.bin", b"two", if_absent=False) is True
    assert local_store.get_object("a/b.bin") == b"two"


def test_get_object_missing_raises(local_store):
    with pytest.raises(MissingBlobError) as excinfo:
        local_store.get_object("nope/missing.mp3")

    assert excinfo.value.key == "nope/missing.mp3"


def test_get_object_honours_cancellation(local_store):
    local_store.put_object("a/data.bin", b"x" * 16)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        local_store.get_object("a/data.bin", cancel=cancel)


def test_get_object_range_is_inclusive(local_store):
    local_store.put_object("a/text", b"hello world")

    assert local_store.get_object_range("a/text", 0, 4) == b"hello"
    assert local_store.get_object_range("a/text", 6, 100) == b"world"
    assert local_store.get_object_range("a/text", 50, 60) == b""
    with pytest.raises(ValueError):
        local_store.get_object_range("a/text", 5, 4)
    with pytest.raises(MissingBlobError):
        local_store.get_object_range("a/missing", 0, 1)


def test_list_objects_treats_prefix_as_directory(local_store, docstore_root):
    local_store.put_object("books/b1-audiobook/0001__A.mp3", b"1")
    local_store.put_object("books/b1-audiobook/0002__B.mp3", b"2")
    local_store.put_object("books/b10-audiobook/0001__C.mp3", b"3")
    (docstore_root / "books" / "b1-audiobook" / ".0003__C.mp3.tmp-abc").write_bytes(b"partial")

    assert local_store.list_objects("books/b1-audiobook") == [
        "books/b1-audiobook/0001__A.mp3",
        "books/b1-audiobook/0002__B.mp3",
    ]
    assert local_store.list_objects("books/b1-audiobook/") == local_store.list_objects("books/b1-audiobook")
    assert local_store.list_objects("books/missing") == []


def test_delete_object_reports_whether_anything_was_removed(local_store):
    local_store.put_object("a/b", b"x")

    assert local_store.delete_object("a/b") is True
    assert local_store.delete_object("a/b") is False
    assert local_store.object_exists("a/b") is False


def test_presign_is_unavailable_locally(local_store):
    local_store.put_object("a/b", b"x")

    assert local_store.presign_get("a/b") is None


def test_move_prefix_never_overwrites(local_store):
    local_store.put_object("src/one.mp3", b"one")
    local_store.put_object("src/two.mp3", b"two")
    local_store.put_object("dst/two.mp3", b"existing")

    result = local_store.move_prefix("src", "dst")

    assert (result.moved, result.skipped) == (1, 1)
    assert local_store.get_object("dst/one.mp3") == b"one"
    assert local_store.get_object("dst/two.mp3") == b"existing"
    assert local_store.get_object("src/two.mp3") == b"two"


def test_move_prefix_of_missing_source_is_a_no_op(local_store):
    result = local_store.move_prefix("src", "dst")

    assert (result.moved, result.skipped) == (0, 0)


@pytest.mark.parametrize("key", ["", "   ", "/etc/passwd", "../escape", "a/../../b", "."])
def test_invalid_keys_are_rejected(local_store, key):
    with pytest.raises(InvalidKeyError):
        local_store.put_object(key, b"x")


def test_normalize_key_cleans_separators():
    assert normalize_key("a\\b/./c") == "a/b/c"
