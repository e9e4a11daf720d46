import io
from collections.abc import Iterable
from typing import Any, BinaryIO
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ._logging import logger
from .config import get_settings
from .exceptions import StorageError


class ObjectStorage:
    """
    Uploads property images and transaction proofs to S3.

    Objects are addressed by path inside one bucket; the returned URL is the
    object's permanent virtual-hosted URL, so it can be stored on the record
    and rendered later without re-signing.

    Usage:
        storage = ObjectStorage()
        url = storage.upload("properties/p-1/front.jpg", data, "image/jpeg")
    """

    def __init__(
        self, bucket: str | None = None, region: str | None = None, client: Any | None = None
    ) -> None:
        settings = get_settings()
        self.bucket = bucket or settings.storage_bucket
        if not self.bucket:
            raise ValueError("No storage bucket configured (set PROPEAS_STORAGE_BUCKET)")
        self.region = region or settings.aws_region
        self.client = client or boto3.client("s3", region_name=self.region)

    def url_for(self, path: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(path)}"

    def upload(
        self, path: str, data: bytes | BinaryIO, content_type: str = "application/octet-stream"
    ) -> str:
        """
        Uploads one object and returns its retrieval URL.

        Raises:
            StorageError: If S3 rejects the upload or cannot be reached
        """
        fileobj = io.BytesIO(data) if isinstance(data, (bytes, bytearray)) else data

        logger.info(
            "Uploading object",
            extra={"bucket": self.bucket, "path": path, "content_type": content_type},
        )
        try:
            self.client.upload_fileobj(
                Fileobj=fileobj,
                Bucket=self.bucket,
                Key=path,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Upload failed", extra={"bucket": self.bucket, "path": path})
            raise StorageError(path, original_error=e) from e

        return self.url_for(path)

    def upload_many(
        self, prefix: str, files: Iterable[tuple[str, bytes | BinaryIO, str]]
    ) -> list[str]:
        """
        Uploads ``(filename, data, content_type)`` triples under ``prefix``.

        Stops at the first failure; objects already uploaded stay in place.
        """
        prefix = prefix.rstrip("/")
        return [
            self.upload(f"{prefix}/{filename}", data, content_type)
            for filename, data, content_type in files
        ]
