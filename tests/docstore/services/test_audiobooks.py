from __future__ import annotations

import pytest

from docstore.migrations import StorageNotReadyError
from docstore.services import (
    AudiobookError,
    AudiobookNotFoundError,
    ChapterNotFoundError,
    FormatMismatchError,
    MixedFormatsError,
    SettingsMismatchError,
)
from docstore.services.audiobooks import next_chapter_index, settings_mismatch
from docstore.storage import InvalidKeyError, StorageError

pytestmark = pytest.mark.services

BOOK_DIR = "audiobooks_v1/b1-audiobook"
SETTINGS = {
    "ttsProvider": "openai",
    "ttsModel": "tts-1",
    "voice": "alloy",
    "nativeSpeed": 1.0,
    "postSpeed": 1.0,
    "format": "mp3",
}


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def service(context):
    return context.audiobooks


def stored_names(context, prefix=BOOK_DIR):
    return [key.rsplit("/", 1)[-1] for key in context.store.list_objects(prefix)]


def test_chapters_fill_the_lowest_free_index(service, context):
    first = service.store_chapter("b1", b"one", title="Intro", settings=SETTINGS)
    second = service.store_chapter("b1", b"two", title="Second")

    assert (first.index, first.format) == (0, "mp3")
    assert second.index == 1
    assert stored_names(context) == ["0001__Intro.mp3", "0002__Second.mp3", "audiobook.meta.json"]

    service.delete_chapter("b1", 0)
    refill = service.store_chapter("b1", b"again", title="New Intro")

    assert refill.index == 0
    assert stored_names(context)[0] == "0001__New%20Intro.mp3"


def test_replacing_an_index_removes_the_old_title(service, context):
    service.store_chapter("b1", b"one", title="Old", format="mp3")

    service.store_chapter("b1", b"new", title="Renamed", chapter_index=0)

    assert stored_names(context) == ["0001__Renamed.mp3"]
    (row,) = context.repository.list_chapters("b1", "unclaimed")
    assert (row.title, row.file_path) == ("Renamed", "0001__Renamed.mp3")


def test_format_follows_existing_chapters(service):
    service.store_chapter("b1", b"one", title="A", format="mp3")

    result = service.store_chapter("b1", b"two", title="B")

    assert result.format == "mp3"


def test_explicit_format_must_match_the_book(service, context):
    service.store_chapter("b1", b"one", title="One", format="m4b")

    with pytest.raises(FormatMismatchError) as excinfo:
        service.store_chapter("b1", b"ID3-MP3-BYTES", title="Two", format="mp3")
    with pytest.raises(FormatMismatchError):
        service.store_chapter("b1", b"ID3-MP3-BYTES", title="Two", settings={**SETTINGS, "format": "mp3"})

    assert (excinfo.value.book_format, excinfo.value.requested) == ("m4b", "mp3")
    assert stored_names(context) == ["0001__One.m4b"]
    assert [row.chapter_index for row in context.repository.list_chapters("b1", "unclaimed")] == [0]


def test_failed_write_leaves_no_book_row(service, context, monkeypatch):
    def broken_put(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(context.store, "put_object", broken_put)

    with pytest.raises(StorageError):
        service.store_chapter("b1", b"one", title="One")

    assert context.repository.get_audiobook("b1", "unclaimed") is None


def test_default_format_is_m4b(service):
    assert service.store_chapter("b1", b"one", title="A").format == "m4b"


def test_settings_mismatch_reports_stored_settings(service):
    service.store_chapter("b1", b"one", title="A", settings=SETTINGS)

    with pytest.raises(SettingsMismatchError) as excinfo:
        service.store_chapter("b1", b"two", title="B", settings={**SETTINGS, "voice": "nova"})

    assert excinfo.value.settings["voice"] == "alloy"


def test_mixed_formats_are_refused(service, context):
    context.store.put_object(f"{BOOK_DIR}/0001__A.mp3", b"a")
    context.store.put_object(f"{BOOK_DIR}/0002__B.m4b", b"b")

    with pytest.raises(MixedFormatsError):
        service.store_chapter("b1", b"c", title="C")


def test_storing_invalidates_the_complete_build(service, context):
    service.store_chapter("b1", b"one", title="A", format="mp3")
    context.store.put_object(f"{BOOK_DIR}/complete.mp3", b"whole")
    context.store.put_object(f"{BOOK_DIR}/complete.mp3.manifest.json", b"{}")
    assert service.get_status("b1").has_complete is True

    service.store_chapter("b1", b"two", title="B")

    assert "complete.mp3" not in stored_names(context)
    assert "complete.mp3.manifest.json" not in stored_names(context)
    assert service.get_status("b1").has_complete is False


def test_status_lists_chapters_settings_and_durations(service, context, tmp_path):
    audio = tmp_path / "chapter.mp3"
    audio.write_bytes(b"encoded")
    service.store_chapter("b1", audio, title="Intro", settings=SETTINGS)
    service.store_chapter("b1", b"two", title="Two", chapter_index=2)

    status = service.get_status("b1")

    assert status.exists is True
    assert [(c.index, c.title, c.duration) for c in status.chapters] == [(0, "Intro", 1.5), (2, "Two", None)]
    assert status.settings == SETTINGS
    assert status.next_index == 1
    payload = status.model_dump()
    assert payload["bookId"] == "b1"
    assert payload["chapters"][0]["fileName"] == "0001__Intro.mp3"


def test_status_of_unknown_book(service, context):
    context.run_layout_migrations()

    status = service.get_status("missing")

    assert status.exists is False
    assert status.chapters == []


def test_status_prunes_rows_when_files_vanish(service, context, docstore_root):
    service.store_chapter("b1", b"one", title="A")
    service.store_chapter("b1", b"two", title="B")
    (docstore_root / BOOK_DIR / "0002__B.m4b").unlink()

    status = service.get_status("b1")

    assert [c.index for c in status.chapters] == [0]
    assert [row.chapter_index for row in context.repository.list_chapters("b1", "unclaimed")] == [0]

    (docstore_root / BOOK_DIR / "0001__A.m4b").unlink()
    assert service.get_status("b1").exists is False
    assert context.repository.get_audiobook("b1", "unclaimed") is None


def test_open_chapter_returns_bytes_locally(service):
    service.store_chapter("b1", b"chapter bytes", title="Intro", format="mp3")

    download = service.open_chapter("b1", 0)

    assert download.url is None
    assert download.data == b"chapter bytes"
    assert download.content_type == "audio/mpeg"
    assert download.title == "Intro"


def test_open_chapter_returns_presigned_url_on_s3(make_context, s3_settings, s3_client):
    service = make_context(base=s3_settings, s3_client=s3_client).audiobooks
    service.store_chapter("b1", b"chapter bytes", title="Intro", format="mp3")

    download = service.open_chapter("b1", 0)

    assert download.data is None
    assert download.url.startswith("https://fake-s3.test/test-bucket/audiobooks_v1/b1-audiobook/0001__Intro.mp3")


def test_open_missing_chapter_prunes_its_row(service, context, docstore_root):
    service.store_chapter("b1", b"one", title="A")
    service.store_chapter("b1", b"two", title="B")
    (docstore_root / BOOK_DIR / "0002__B.m4b").unlink()

    with pytest.raises(ChapterNotFoundError):
        service.open_chapter("b1", 1)

    assert [row.chapter_index for row in context.repository.list_chapters("b1", "unclaimed")] == [0]
    with pytest.raises(AudiobookNotFoundError):
        service.open_chapter("nope", 0)


def test_delete_chapter_requires_the_book(service):
    with pytest.raises(AudiobookNotFoundError):
        service.delete_chapter("b1", 0)


def test_reset_removes_files_and_rows(service, context):
    service.store_chapter("b1", b"one", title="A", settings=SETTINGS)
    service.store_chapter("b1", b"two", title="B")

    deleted = service.reset_book("b1")

    assert deleted == 3
    assert stored_names(context) == []
    assert context.repository.get_audiobook("b1", "unclaimed") is None


def test_auth_mode_stores_per_owner(make_context):
    context = make_context(auth_enabled=True)
    service = context.audiobooks

    service.store_chapter("b1", b"one", title="A", user_id="alice")

    assert stored_names(context, "audiobooks_v1/users/alice/b1-audiobook") == ["0001__A.m4b"]
    assert service.get_status("b1", user_id="alice").exists is True
    assert service.get_status("b1", user_id="bob").exists is False
    with pytest.raises(InvalidKeyError):
        service.store_chapter("b1", b"x", user_id="../bob")


def test_unclaimed_books_are_readable_by_any_user(make_context):
    context = make_context(auth_enabled=True)
    service = context.audiobooks
    service.store_chapter("b1", b"one", title="A")

    assert service.get_status("b1", user_id="alice").exists is True
    assert service.open_chapter("b1", 0, user_id="alice").data == b"one"


def test_unmigrated_storage_is_refused(service, docstore_root):
    book = docstore_root / BOOK_DIR
    book.mkdir(parents=True)
    (book / "0.meta.json").write_text("{", encoding="utf-8")

    with pytest.raises(StorageNotReadyError):
        service.store_chapter("b1", b"one", title="A")
    with pytest.raises(StorageNotReadyError):
        service.get_status("b1")


def test_invalid_arguments(service):
    with pytest.raises(InvalidKeyError):
        service.store_chapter("../b1", b"one")
    with pytest.raises(AudiobookError):
        service.store_chapter("b1", b"one", chapter_index=-1)
    with pytest.raises(AudiobookError):
        service.store_chapter("b1", b"one", format="wav")


def test_helpers():
    assert next_chapter_index([]) == 0
    assert next_chapter_index([0, 1, 3]) == 2
    assert settings_mismatch(SETTINGS, dict(SETTINGS)) is False
    assert settings_mismatch(SETTINGS, {**SETTINGS, "postSpeed": 1.25}) is True
