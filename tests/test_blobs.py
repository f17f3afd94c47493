"""
test_blobs.py - Tests for the local and S3 blob stores.
"""

import asyncio
import io

import pytest
from botocore.exceptions import ClientError

from pocketlite.blobs import LocalBlobStore, S3BlobStore, create_blob_store
from pocketlite.errors import BlobStoreError, NotFoundError


class TestLocalBlobStore:

    @pytest.fixture(autouse=True)
    def _store(self, temp_dir):
        self.store = LocalBlobStore(temp_dir)

    def test_put_get_delete(self):
        asyncio.run(self.store.put("posts/p1/a.json", b"{}"))
        content, content_type = asyncio.run(self.store.get("posts/p1/a.json"))
        assert content == b"{}"
        assert content_type == "application/json"
        assert asyncio.run(self.store.delete("posts/p1/a.json")) is True
        assert asyncio.run(self.store.delete("posts/p1/a.json")) is False

    def test_missing(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.store.get("posts/p1/none.txt"))

    def test_no_presigned_url(self):
        assert asyncio.run(self.store.presigned_url("posts/p1/a.txt")) is None

    def test_path_escape(self):
        with pytest.raises(BlobStoreError):
            asyncio.run(self.store.put("../outside.txt", b"x"))


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self):
        self.objects = {}

    @staticmethod
    def _missing(operation):
        return ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = (Body, ContentType)
        return {"ETag": '"etag"'}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise self._missing("GetObject")
        body, content_type = self.objects[(Bucket, Key)]
        return {"Body": io.BytesIO(body), "ContentType": content_type}

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)

    def generate_presigned_url(self, method, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.s3.example/{Params['Key']}?ttl={ExpiresIn}"


class TestS3BlobStore:

    def setup_method(self):
        self.client = FakeS3Client()
        self.store = S3BlobStore("bucket", prefix="uploads/", client=self.client)

    def test_put_get(self):
        asyncio.run(self.store.put("posts/p1/a.png", b"png"))
        assert ("bucket", "uploads/posts/p1/a.png") in self.client.objects
        assert asyncio.run(self.store.get("posts/p1/a.png")) == (b"png", "image/png")

    def test_missing_object(self):
        with pytest.raises(NotFoundError):
            asyncio.run(self.store.get("posts/p1/none"))

    def test_delete(self):
        asyncio.run(self.store.put("posts/p1/a.png", b"png"))
        assert asyncio.run(self.store.delete("posts/p1/a.png")) is True
        assert asyncio.run(self.store.delete("posts/p1/a.png")) is False

    def test_presigned_url(self):
        url = asyncio.run(self.store.presigned_url("posts/p1/a.png", ttl=60))
        assert url == "https://bucket.s3.example/uploads/posts/p1/a.png?ttl=60"


def test_create_blob_store_defaults_to_local(temp_dir):
    assert isinstance(create_blob_store(temp_dir), LocalBlobStore)
