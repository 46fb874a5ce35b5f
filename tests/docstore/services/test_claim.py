from __future__ import annotations

import pytest

from docstore.database.repository import ChapterRecord, DocumentRecord
from docstore.services import ClaimError, OwnershipClaimEngine
from docstore.storage import StorageError, StorageLayout

pytestmark = pytest.mark.services

SHA_A = "a" * 64
SHA_B = "b" * 64


def document(doc_id, owner):
    return DocumentRecord(
        id=doc_id, user_id=owner, name=f"{doc_id[:4]}.pdf", type="pdf", size=1, last_modified=1, file_path=doc_id
    )


def seed_book(store, layout, repository, book_id, owner, indices=(0,)):
    repository.ensure_audiobook(book_id, owner, "Book")
    for index in indices:
        file_name = f"{index + 1:04d}__Ch.mp3"
        store.put_object(f"{layout.book_prefix(book_id, owner)}/{file_name}", b"audio")
        repository.upsert_chapter(
            ChapterRecord(
                book_id=book_id,
                user_id=owner,
                chapter_index=index,
                title="Ch",
                file_path=file_name,
                format="mp3",
            )
        )


@pytest.fixture
def layout():
    return StorageLayout(auth_enabled=True)


@pytest.fixture
def engine(local_store, layout, repository):
    return OwnershipClaimEngine(local_store, layout, repository)


def test_claim_moves_files_then_rows(engine, local_store, layout, repository):
    seed_book(local_store, layout, repository, "b1", "unclaimed", indices=(0, 1))
    repository.insert_documents([document(SHA_A, "unclaimed")])

    result = engine.claim("unclaimed", "alice")

    assert (result.documents, result.audiobooks, result.failed) == (1, 1, 0)
    assert local_store.list_objects(layout.book_prefix("b1", "unclaimed")) == []
    assert len(local_store.list_objects(layout.book_prefix("b1", "alice"))) == 2
    assert repository.get_audiobook("b1", "alice") is not None
    assert repository.get_audiobook("b1", "unclaimed") is None
    assert [row.chapter_index for row in repository.list_chapters("b1", "alice")] == [0, 1]
    assert repository.count_owned("unclaimed") == (0, 0)


def test_duplicate_documents_keep_the_destination_row(engine, repository):
    repository.insert_documents([document(SHA_A, "alice"), document(SHA_A, "unclaimed"), document(SHA_B, "unclaimed")])

    result = engine.claim("unclaimed", "alice")

    assert result.documents == 2
    assert repository.document_ids_for_user("alice") == {SHA_A, SHA_B}
    assert repository.list_documents("unclaimed") == []


def test_same_owner_is_a_no_op(engine, local_store, layout, repository):
    seed_book(local_store, layout, repository, "b1", "alice")

    result = engine.claim("alice", "alice")

    assert (result.documents, result.audiobooks, result.failed) == (0, 0, 0)
    assert repository.get_audiobook("b1", "alice") is not None


@pytest.mark.parametrize("owners", [("unclaimed", "../alice"), ("", "alice"), ("un/claimed", "alice")])
def test_invalid_owner_ids_are_rejected(engine, owners):
    with pytest.raises(ClaimError):
        engine.claim(*owners)


def test_failed_move_leaves_rows_with_the_source(engine, local_store, layout, repository, monkeypatch):
    seed_book(local_store, layout, repository, "b1", "unclaimed")
    seed_book(local_store, layout, repository, "b2", "unclaimed")
    original = local_store.move_prefix

    def flaky_move(source, destination):
        if "b1-audiobook" in source:
            raise StorageError("disk unavailable")
        return original(source, destination)

    monkeypatch.setattr(local_store, "move_prefix", flaky_move)

    result = engine.claim("unclaimed", "alice")

    assert (result.audiobooks, result.failed) == (1, 1)
    assert repository.get_audiobook("b1", "unclaimed") is not None
    assert repository.get_audiobook("b1", "alice") is None
    assert local_store.list_objects(layout.book_prefix("b1", "unclaimed"))
    assert repository.get_audiobook("b2", "alice") is not None


def test_flat_layout_only_swaps_rows(local_store, repository):
    layout = StorageLayout(auth_enabled=False)
    engine = OwnershipClaimEngine(local_store, layout, repository)
    seed_book(local_store, layout, repository, "b1", "unclaimed")

    engine.claim("unclaimed", "alice")

    assert local_store.list_objects(layout.book_prefix("b1")) == ["audiobooks_v1/b1-audiobook/0001__Ch.mp3"]
    assert repository.get_audiobook("b1", "alice") is not None


def test_existing_destination_files_are_not_overwritten(engine, local_store, layout, repository):
    seed_book(local_store, layout, repository, "b1", "unclaimed")
    local_store.put_object(f"{layout.book_prefix('b1', 'alice')}/0001__Ch.mp3", b"alice copy")

    result = engine.claim("unclaimed", "alice")

    assert (result.audiobooks, result.failed) == (0, 1)
    assert local_store.get_object(f"{layout.book_prefix('b1', 'alice')}/0001__Ch.mp3") == b"alice copy"
    assert local_store.list_objects(layout.book_prefix("b1", "unclaimed")) == [
        "audiobooks_v1/users/unclaimed/b1-audiobook/0001__Ch.mp3"
    ]
    assert repository.get_audiobook("b1", "unclaimed") is not None
    assert [row.chapter_index for row in repository.list_chapters("b1", "unclaimed")] == [0]


def test_identical_destination_copy_drops_the_source_file(engine, local_store, layout, repository):
    seed_book(local_store, layout, repository, "b1", "unclaimed", indices=(0, 1))
    local_store.put_object(f"{layout.book_prefix('b1', 'alice')}/0001__Ch.mp3", b"audio")

    result = engine.claim("unclaimed", "alice")

    assert (result.audiobooks, result.failed) == (1, 0)
    assert local_store.list_objects(layout.book_prefix("b1", "unclaimed")) == []
    assert len(local_store.list_objects(layout.book_prefix("b1", "alice"))) == 2
    assert repository.get_audiobook("b1", "unclaimed") is None
    assert [row.chapter_index for row in repository.list_chapters("b1", "alice")] == [0, 1]
