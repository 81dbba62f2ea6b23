"""S3-compatible object store client.

Provides read/write/move/delete and pre-signed URL operations using boto3.
Containers map to buckets. ``move`` is copy-then-delete and is safe to
repeat: a missing source is reported and left alone.
"""

from __future__ import annotations

import logging
import os

import boto3
from botocore.exceptions import ClientError

from transcription_ingest.storage.paths import get_container_and_file_name_from_url
from transcription_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_URL_EXPIRY_SECONDS = 12 * 3600
_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class BlobClient:
    """S3-compatible client for the input, output and report containers.

    Reads configuration from environment variables:
        STORAGE_ENDPOINT, STORAGE_ACCESS_KEY_ID, STORAGE_SECRET_ACCESS_KEY,
        STORAGE_REGION
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("STORAGE_ENDPOINT", "")
        self.access_key_id = access_key_id or os.environ.get(
            "STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "STORAGE_SECRET_ACCESS_KEY", ""
        )
        self.region_name = region_name or os.environ.get("STORAGE_REGION", "auto")

        if not self.endpoint_url:
            raise StorageError("STORAGE_ENDPOINT is required", operation="init")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region_name,
        )

    def read(self, container: str, name: str) -> bytes:
        """Retrieve a blob.

        Raises:
            StorageError: If the blob cannot be retrieved.
        """
        try:
            response = self._client.get_object(Bucket=container, Key=name)
            return response["Body"].read()
        except ClientError as exc:
            raise StorageError(
                f"Failed to read '{container}/{name}': {_error_code(exc)}",
                file_name=name,
                operation="read",
            ) from exc

    def write(
        self,
        container: str,
        name: str,
        data: bytes | str,
        content_type: str = "",
    ) -> None:
        """Store a blob, replacing any existing one.

        Text is encoded as UTF-8.

        Raises:
            StorageError: If the blob cannot be stored.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
            content_type = content_type or "text/plain; charset=utf-8"
        try:
            kwargs: dict = {"Bucket": container, "Key": name, "Body": data}
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)
        except ClientError as exc:
            raise StorageError(
                f"Failed to write '{container}/{name}': {_error_code(exc)}",
                file_name=name,
                operation="write",
            ) from exc
        logger.info("Wrote %s/%s (%d bytes)", container, name, len(data))

    def exists(self, container: str, name: str) -> bool:
        try:
            self._client.head_object(Bucket=container, Key=name)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise StorageError(
                f"Failed to inspect '{container}/{name}': {_error_code(exc)}",
                file_name=name,
                operation="exists",
            ) from exc
        return True

    def move(
        self,
        src_container: str,
        src_name: str,
        dst_container: str,
        dst_name: str,
        overwrite: bool = False,
    ) -> bool:
        """Move a blob between containers.

        Args:
            src_container: Source container.
            src_name: Source blob name.
            dst_container: Destination container.
            dst_name: Destination blob name.
            overwrite: Replace an existing destination. When False an
                existing destination is kept and only the source removed.

        Returns:
            True if the source was moved, False if it no longer existed.

        Raises:
            StorageError: If copying or deleting fails.
        """
        if not self.exists(src_container, src_name):
            logger.warning(
                "Source %s/%s not found, nothing to move", src_container, src_name
            )
            return False

        if overwrite or not self.exists(dst_container, dst_name):
            try:
                self._client.copy_object(
                    Bucket=dst_container,
                    Key=dst_name,
                    CopySource={"Bucket": src_container, "Key": src_name},
                )
            except ClientError as exc:
                raise StorageError(
                    f"Failed to copy '{src_container}/{src_name}' to "
                    f"'{dst_container}/{dst_name}': {_error_code(exc)}",
                    file_name=src_name,
                    operation="move",
                ) from exc
        else:
            logger.warning(
                "Destination %s/%s exists, keeping it", dst_container, dst_name
            )

        self.delete(src_container, src_name)
        logger.info(
            "Moved %s/%s to %s/%s", src_container, src_name, dst_container, dst_name
        )
        return True

    def delete(self, container: str, name: str) -> None:
        """Delete a blob. Deleting a missing blob is not an error.

        Raises:
            StorageError: If the delete call fails.
        """
        try:
            self._client.delete_object(Bucket=container, Key=name)
        except ClientError as exc:
            raise StorageError(
                f"Failed to delete '{container}/{name}': {_error_code(exc)}",
                file_name=name,
                operation="delete",
            ) from exc
        logger.info("Deleted %s/%s", container, name)

    def create_temporary_access_url(
        self,
        url: str,
        expires_in: int = DEFAULT_ACCESS_URL_EXPIRY_SECONDS,
    ) -> str:
        """Return a pre-signed GET URL the provider can fetch the blob from.

        Raises:
            StorageError: If the URL cannot be parsed or signed.
        """
        try:
            container, name = get_container_and_file_name_from_url(url)
        except ValueError as exc:
            raise StorageError(str(exc), operation="create_access_url") from exc
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": container, "Key": name},
                ExpiresIn=expires_in,
            )
        except ClientError as exc:
            raise StorageError(
                f"Failed to sign '{container}/{name}': {_error_code(exc)}",
                file_name=name,
                operation="create_access_url",
            ) from exc
