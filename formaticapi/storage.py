import logging
from functools import lru_cache
from typing import Iterable

from minio import Minio
from formaticapi.config import config

logger = logging.getLogger(__name__)


@lru_cache()
def get_minio_client() -> Minio:
    return Minio(
        endpoint=config.MINIO_ENDPOINT,
        access_key=config.MINIO_ROOT_USER,
        secret_key=config.MINIO_ROOT_PASSWORD,
        secure=config.MINIO_SECURE
    )


def ensure_bucket(minio_client: Minio, bucket: str) -> None:
    if not minio_client.bucket_exists(bucket_name=bucket):
        minio_client.make_bucket(bucket_name=bucket)
        logger.info(f"MinIO bucket '{bucket}' created.")


def object_url(obj_name: str) -> str:
    scheme = "https" if config.MINIO_SECURE else "http"
    return f"{scheme}://{config.MINIO_ENDPOINT}/{config.MINIO_BUCKET}/{obj_name}"


def remove_objects(minio_client: Minio, object_names: Iterable[str]) -> None:
    for obj_name in object_names:
        try:
            minio_client.remove_object(bucket_name=config.MINIO_BUCKET, object_name=obj_name)
        except Exception as e:
            # the media rows are already gone, so this only leaves an orphaned object
            logger.warning(f"MinIO removal of '{obj_name}' failed: {e}")
