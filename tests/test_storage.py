import io

import boto3
import pytest
from botocore.exceptions import ClientError

from app.portal.storage import LocalStorage, S3Storage, StorageError, storage_from_config


def test_local_roundtrip(tmp_path):
    storage = LocalStorage(root=tmp_path)
    storage.put_bytes("submissions/1/2/a.txt", b"data")
    assert storage.exists("submissions/1/2/a.txt")
    with storage.open("submissions/1/2/a.txt") as f:
        assert f.read() == b"data"
    storage.delete("submissions/1/2/a.txt")
    assert not storage.exists("submissions/1/2/a.txt")
    with pytest.raises(StorageError):
        storage.open("submissions/1/2/a.txt")


def test_local_rejects_escaping_keys(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.txt", b"nope")


class _FakeS3:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, **extra):
        self.objects[(Bucket, Key)] = Body

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404"}}, "HeadObject")

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


def test_s3_backend(monkeypatch):
    fake = _FakeS3()
    monkeypatch.setattr(boto3, "client", lambda *a, **kw: fake)
    storage = storage_from_config(
        {
            "STORAGE_BACKEND": "s3",
            "S3_ENDPOINT": "nyc3.example.com",
            "S3_BUCKET": "portal",
            "S3_ACCESS_KEY_ID": "key",
            "S3_SECRET_ACCESS_KEY": "secret",
        }
    )
    assert isinstance(storage, S3Storage)

    storage.put_bytes("k.txt", b"abc", content_type="text/plain")
    assert storage.exists("k.txt")
    assert storage.open("k.txt").read() == b"abc"
    storage.delete("k.txt")
    assert not storage.exists("k.txt")
    with pytest.raises(StorageError):
        storage.open("k.txt")
