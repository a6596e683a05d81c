import io
import logging

from minio import Minio

from .config import MINIO_ACCESS_KEY, MINIO_BUCKET, MINIO_ENDPOINT, MINIO_SECRET_KEY, MINIO_SECURE

logger = logging.getLogger(__name__)

_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=MINIO_SECURE,
)
_bucket_ready = False


def receipt_key(branch_id: str, kind: str, document_id: str, record_id: str, ext: str) -> str:
    # one prefix per branch
    return f"branches/{branch_id}/{kind}/{document_id}/receipt-{record_id}.{ext}"


def ensure_bucket():
    global _bucket_ready
    if _bucket_ready:
        return
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)
        logger.info("created bucket %s", MINIO_BUCKET)
    _bucket_ready = True


def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)
    logger.debug("stored %s (%d bytes)", key, len(data))


def get_bytes(key: str) -> bytes:
    resp = _client.get_object(MINIO_BUCKET, key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()
