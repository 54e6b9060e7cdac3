import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from app.core.config import settings
from app.core.errors import StorageError

logger = logging.getLogger(__name__)


class ObjectStore:
    """Durable placement of binary artifacts under folder-scoped keys."""

    def _put(self, local_path: Path, key: str, content_type: Optional[str]) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def get_public_url(self, key: str) -> str:
        raise NotImplementedError

    @staticmethod
    def build_key(folder: str, filename: Optional[str], original_name: str) -> str:
        if not filename:
            filename = f"{uuid.uuid4()}{Path(original_name).suffix}"
        return f"{folder.strip('/')}/{filename}"

    def upload(
        self,
        local_path,
        *,
        folder: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        keep_local: bool = False,
        original_name: Optional[str] = None,
    ) -> str:
        """Store a local file and return its key.

        The local file is removed after a successful upload unless keep_local
        is set (the upload handler keeps the source for the processing worker).
        """
        local_path = Path(local_path)
        key = self.build_key(folder, filename, original_name or local_path.name)
        self._put(local_path, key, content_type)
        if not keep_local:
            try:
                local_path.unlink()
            except FileNotFoundError:
                pass
        return key

    def upload_from_path(
        self,
        path,
        *,
        folder: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a file produced on this machine (not a web upload)."""
        return self.upload(path, folder=folder, filename=filename, content_type=content_type)


class S3ObjectStore(ObjectStore):
    def __init__(self, client=None, bucket: Optional[str] = None, public_base_url: Optional[str] = None):
        self.s3_client = client or boto3.client("s3", region_name=settings.aws_region)
        self.bucket = bucket or settings.s3_bucket
        self.public_base_url = (
            public_base_url if public_base_url is not None else settings.public_base_url
        ).rstrip("/")

    def _put(self, local_path: Path, key: str, content_type: Optional[str]) -> None:
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            self.s3_client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra_args)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading to S3: {e}")
            raise StorageError(f"Upload of {key} failed: {e}")
        logger.info(f"Uploaded file to s3://{self.bucket}/{key}")

    def delete(self, key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting from S3: {e}")
            raise StorageError(f"Delete of {key} failed: {e}")
        logger.info(f"Deleted s3://{self.bucket}/{key}")

    def get_public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store for development; files are served under /uploads."""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.local_storage_dir)
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _target(self, key: str) -> Path:
        target = (self.root / key).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return target

    def _put(self, local_path: Path, key: str, content_type: Optional[str]) -> None:
        target = self._target(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, target)
        except OSError as e:
            logger.error(f"Error storing {key} locally: {e}")
            raise StorageError(f"Upload of {key} failed: {e}")
        logger.info(f"Stored file at {target}")

    def delete(self, key: str) -> None:
        target = self._target(key)
        try:
            os.unlink(target)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Delete of {key} failed: {e}")

    def get_public_url(self, key: str) -> str:
        return f"{self.base_url}/uploads/{key}"


def get_object_store() -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore()
    return S3ObjectStore()
