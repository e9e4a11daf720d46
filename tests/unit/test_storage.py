"""
Unit tests for ObjectStorage over a mocked S3 client.
"""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from propeas.exceptions import StorageError
from propeas.storage import ObjectStorage


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def storage(s3_client) -> ObjectStorage:
    return ObjectStorage(bucket="propeas-media", region="ap-south-1", client=s3_client)


@pytest.mark.unit
class TestObjectStorage:
    """Test uploads and URLs."""

    def test_requires_bucket(self) -> None:
        with pytest.raises(ValueError, match="PROPEAS_STORAGE_BUCKET"):
            ObjectStorage(client=MagicMock())

    def test_bucket_from_settings(self, monkeypatch) -> None:
        from propeas.config import get_settings

        monkeypatch.setenv("PROPEAS_STORAGE_BUCKET", "env-bucket")
        get_settings.cache_clear()

        storage = ObjectStorage(client=MagicMock())
        assert storage.bucket == "env-bucket"
        assert storage.region == "ap-south-1"

    def test_url_quotes_path(self, storage) -> None:
        assert (
            storage.url_for("properties/p1/front door.jpg")
            == "https://propeas-media.s3.ap-south-1.amazonaws.com/properties/p1/front%20door.jpg"
        )

    def test_upload_bytes(self, storage, s3_client) -> None:
        url = storage.upload("properties/p1/a.jpg", b"\xff\xd8", "image/jpeg")

        assert url == "https://propeas-media.s3.ap-south-1.amazonaws.com/properties/p1/a.jpg"
        kwargs = s3_client.upload_fileobj.call_args.kwargs
        assert kwargs["Bucket"] == "propeas-media"
        assert kwargs["Key"] == "properties/p1/a.jpg"
        assert kwargs["ExtraArgs"] == {"ContentType": "image/jpeg"}
        assert kwargs["Fileobj"].read() == b"\xff\xd8"

    def test_upload_file_object_as_is(self, storage, s3_client) -> None:
        fileobj = io.BytesIO(b"pdf")
        storage.upload("proofs/t1.pdf", fileobj, "application/pdf")
        assert s3_client.upload_fileobj.call_args.kwargs["Fileobj"] is fileobj

    def test_upload_failure_raises_storage_error(self, storage, s3_client) -> None:
        s3_client.upload_fileobj.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )

        with pytest.raises(StorageError) as exc:
            storage.upload("properties/p1/a.jpg", b"x")

        assert exc.value.path == "properties/p1/a.jpg"

    def test_connection_failure_raises_storage_error(self, storage, s3_client) -> None:
        s3_client.upload_fileobj.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with pytest.raises(StorageError):
            storage.upload("a.jpg", b"x")

    def test_upload_many_under_prefix(self, storage, s3_client) -> None:
        urls = storage.upload_many(
            "properties/p1/",
            [("a.jpg", b"a", "image/jpeg"), ("b.png", b"b", "image/png")],
        )

        assert urls == [
            "https://propeas-media.s3.ap-south-1.amazonaws.com/properties/p1/a.jpg",
            "https://propeas-media.s3.ap-south-1.amazonaws.com/properties/p1/b.png",
        ]
        assert s3_client.upload_fileobj.call_count == 2

    def test_upload_many_stops_at_first_failure(self, storage, s3_client) -> None:
        s3_client.upload_fileobj.side_effect = [None, ClientError({"Error": {"Code": "X"}}, "PutObject"), None]

        with pytest.raises(StorageError):
            storage.upload_many("p", [("a", b"a", "x"), ("b", b"b", "x"), ("c", b"c", "x")])

        assert s3_client.upload_fileobj.call_count == 2
