from __future__ import annotations

import io
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

import pytest
from botocore.exceptions import ClientError
from pydantic import SecretStr

os.environ.setdefault("DOCSTORE_LOG_DIR", str(Path(tempfile.gettempdir()) / "docstore-test-logs"))

from docstore.config_manager import DocstoreSettings  # noqa: E402
from docstore.context import DocstoreContext  # noqa: E402
from docstore.database import Database, MetadataRepository  # noqa: E402
from docstore.media.exceptions import CommandExecutionError  # noqa: E402
from docstore.media.probe import AudioProbe  # noqa: E402
from docstore.storage import LocalBlobStore, S3BlobStore  # noqa: E402


def client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)
        self.closed = False

    def read(self, amt: Optional[int] = None) -> bytes:
        return self._buffer.read() if amt is None else self._buffer.read(amt)

    def close(self) -> None:
        self.closed = True


class FakePaginator:
    def __init__(self, client: "FakeS3Client") -> None:
        self._client = client

    def paginate(self, *, Bucket: str, Prefix: str = "") -> Iterator[Dict[str, object]]:
        keys = sorted(key for key in self._client.objects if key.startswith(Prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        size = self._client.page_size
        for start in range(0, len(keys), size):
            yield {"Contents": [{"Key": key} for key in keys[start : start + size]]}


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client, raising real ``ClientError``s."""

    def __init__(self, *, page_size: int = 2) -> None:
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}
        self.page_size = page_size
        self.calls: List[str] = []

    def put_object(self, *, Bucket, Key, Body, ContentType=None, IfNoneMatch=None):
        self.calls.append("put_object")
        if IfNoneMatch == "*" and Key in self.objects:
            raise client_error("PreconditionFailed", 412, "PutObject")
        self.objects[Key] = bytes(Body)
        self.content_types[Key] = ContentType
        return {"ETag": '"fake"'}

    def get_object(self, *, Bucket, Key, Range=None):
        self.calls.append("get_object")
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        data = self.objects[Key]
        if Range:
            start_text, _, end_text = Range[len("bytes=") :].partition("-")
            start, end = int(start_text), int(end_text)
            if start >= len(data):
                raise client_error("InvalidRange", 416, "GetObject")
            data = data[start : end + 1]
        return {"Body": FakeBody(data), "ContentLength": len(data)}

    def head_object(self, *, Bucket, Key):
        self.calls.append("head_object")
        if Key not in self.objects:
            raise client_error("404", 404, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def delete_object(self, *, Bucket, Key):
        self.calls.append("delete_object")
        self.objects.pop(Key, None)
        return {}

    def copy_object(self, *, Bucket, Key, CopySource):
        self.calls.append("copy_object")
        source = CopySource["Key"]
        if source not in self.objects:
            raise client_error("NoSuchKey", 404, "CopyObject")
        self.objects[Key] = self.objects[source]
        return {}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def generate_presigned_url(self, method, Params, ExpiresIn):
        return f"https://fake-s3.test/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


class FakeProber:
    """Return canned probe results keyed by file name."""

    def __init__(self, results: Optional[Dict[str, AudioProbe]] = None, *, duration: float = 1.5) -> None:
        self.results = dict(results or {})
        self.duration = duration
        self.probed: List[str] = []

    def probe(self, path: Path, *, cancel=None) -> AudioProbe:
        self.probed.append(Path(path).name)
        result = self.results.get(Path(path).name)
        if isinstance(result, Exception):
            raise result
        return result or AudioProbe(duration_sec=self.duration)


class FakeTagger:
    """Copy the source and remember which title tag was requested."""

    def __init__(self, *, fail_copy: bool = False, fail_transcode: bool = False) -> None:
        self.fail_copy = fail_copy
        self.fail_transcode = fail_transcode
        self.tags: Dict[str, str] = {}
        self.attempts: List[str] = []

    def copy_with_title(self, source, destination, fmt, title_tag, *, cancel=None) -> None:
        self.attempts.append("copy")
        if self.fail_copy:
            raise CommandExecutionError(["ffmpeg", "-c", "copy"], returncode=1)
        self._write(source, destination, title_tag)

    def transcode_with_title(self, source, destination, fmt, title_tag, *, cancel=None) -> None:
        self.attempts.append("transcode")
        if self.fail_transcode:
            raise CommandExecutionError(["ffmpeg", "-c:a"], returncode=1)
        self._write(source, destination, title_tag)

    def _write(self, source: Path, destination: Path, title_tag: str) -> None:
        shutil.copyfile(source, destination)
        self.tags[Path(destination).name] = title_tag


@pytest.fixture
def docstore_root(tmp_path: Path) -> Path:
    root = tmp_path / "docstore"
    root.mkdir()
    return root


@pytest.fixture
def settings(docstore_root: Path) -> DocstoreSettings:
    return DocstoreSettings(docstore_dir=str(docstore_root))


@pytest.fixture
def s3_settings(settings: DocstoreSettings) -> DocstoreSettings:
    return settings.model_copy(
        update={
            "s3_bucket": "test-bucket",
            "s3_region": "us-east-1",
            "s3_access_key_id": "test-key",
            "s3_secret_access_key": SecretStr("test-secret"),
        }
    )


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def fake_tagger() -> FakeTagger:
    return FakeTagger()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_store(s3_client: FakeS3Client) -> S3BlobStore:
    return S3BlobStore(bucket="test-bucket", client=s3_client)


@pytest.fixture
def local_store(docstore_root: Path) -> LocalBlobStore:
    return LocalBlobStore(docstore_root)


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[MetadataRepository]:
    database = Database(f"sqlite:///{(tmp_path / 'metadata.db').as_posix()}")
    database.create_all()
    yield MetadataRepository(database)
    database.dispose()


@pytest.fixture
def make_context(
    settings: DocstoreSettings,
    fake_prober: FakeProber,
    fake_tagger: FakeTagger,
) -> Iterator[Callable[..., DocstoreContext]]:
    """Build contexts over the temporary root; every one is closed afterwards."""

    created: List[DocstoreContext] = []

    def _make(*, base: Optional[DocstoreSettings] = None, **kwargs) -> DocstoreContext:
        active = base or settings
        updates = {key: kwargs.pop(key) for key in list(kwargs) if key in DocstoreSettings.model_fields}
        if updates:
            active = active.model_copy(update=updates)
        kwargs.setdefault("tagger", fake_tagger)
        kwargs.setdefault("prober", fake_prober)
        context = DocstoreContext(active, **kwargs)
        created.append(context)
        return context

    yield _make
    for context in created:
        context.close()
