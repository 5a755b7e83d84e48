"""Remote object storage on DigitalOcean Spaces (S3-compatible)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import ClientError

from vidloop.backend.utils.constant import (
    SPACES_BUCKET,
    SPACES_KEY,
    SPACES_REGION,
    SPACES_SECRET,
)

_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".gif": "image/gif",
}

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def content_type_for(name: str) -> str:
    """Return the Content-Type used when uploading ``name``."""
    return _CONTENT_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")


class SpacesStorage:
    """Upload, inspect and delete rendered loops in a Spaces bucket."""

    def __init__(self, *, bucket: str, region: str, client: Any) -> None:
        self._bucket = bucket
        self._region = region
        self._client = client

    @classmethod
    def from_env(cls) -> SpacesStorage | None:
        """Build storage from SPACES_* settings, or None when not configured."""
        if not (SPACES_KEY and SPACES_SECRET):
            return None
        client = boto3.client(
            "s3",
            region_name=SPACES_REGION,
            endpoint_url=f"https://{SPACES_REGION}.digitaloceanspaces.com",
            aws_access_key_id=SPACES_KEY,
            aws_secret_access_key=SPACES_SECRET,
        )
        return cls(bucket=SPACES_BUCKET, region=SPACES_REGION, client=client)

    def public_url(self, name: str) -> str:
        return f"https://{self._bucket}.{self._region}.digitaloceanspaces.com/{name}"

    def upload(self, local_path: Path, name: str) -> str:
        """Upload ``local_path`` as a public object and return its URL."""
        self._client.upload_file(
            str(local_path),
            self._bucket,
            name,
            ExtraArgs={"ACL": "public-read", "ContentType": content_type_for(name)},
        )
        url = self.public_url(name)
        logging.info("Uploaded %s to %s", local_path, url)
        return url

    def delete(self, name: str) -> bool:
        self._client.delete_object(Bucket=self._bucket, Key=name)
        logging.info("Deleted %s from bucket %s", name, self._bucket)
        return True

    def exists(self, name: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=name)
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES:
                return False
            raise
        return True

    def signed_url(self, name: str, ttl_seconds: int = 3600) -> str:
        """Return a presigned GET URL valid for ``ttl_seconds``."""
        return str(
            self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": name},
                ExpiresIn=int(ttl_seconds),
            )
        )
