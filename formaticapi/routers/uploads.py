import io
import logging
from typing import Annotated
from uuid import uuid4

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from minio import Minio
from werkzeug.utils import secure_filename
from formaticapi.config import config
from formaticapi.database import database, form_table, mediafile_table, utcnow
from formaticapi.storage import ensure_bucket, get_minio_client, object_url

router = APIRouter()
logger = logging.getLogger(__name__)

ALLOWED = {"pdf", "docx", "txt", "csv", "jpg", "jpeg", "png", "gif", "mp3", "wav", "mp4"}


@router.post("", status_code=201)
async def upload_file(
    form_id: int,
    minio_client: Annotated[Minio, Depends(get_minio_client)],
    file: UploadFile = File(...),
):
    form = await database.fetch_one(form_table.select().where(form_table.c.id == form_id))
    if not form or not form.published:
        raise HTTPException(status_code=404, detail="Form not found or not published")

    if not file or not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided"
        )

    ext = file.filename.rsplit(".", 1)[-1].lower() if "." in file.filename else ""
    if ext not in ALLOWED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File type not allowed"
        )

    # one byte past the limit is enough to know it is too large
    file_content = await file.read(config.MAX_UPLOAD_BYTES + 1)
    file_size = len(file_content)
    if file_size > config.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {config.MAX_UPLOAD_BYTES} bytes"
        )

    filename = secure_filename(file.filename)
    obj_name = f"{uuid4().hex}_{filename}"

    try:
        ensure_bucket(minio_client, config.MINIO_BUCKET)
        minio_client.put_object(
            bucket_name=config.MINIO_BUCKET,
            object_name=obj_name,
            data=io.BytesIO(file_content),
            length=file_size,
            content_type=file.content_type or "application/octet-stream"
        )
    except Exception as e:
        logger.error(f"MinIO upload failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file to storage"
        ) from e

    url = object_url(obj_name)
    query = mediafile_table.insert().values(
        form_id=form_id,
        filename=filename,
        content_type=file.content_type,
        object_name=obj_name,
        url=url,
        size=file_size,
        created_at=utcnow(),
    )
    media_id = await database.execute(query)

    return {
        "id": media_id,
        "url": url,
        "filename": filename,
        "content_type": file.content_type,
        "size": file_size
    }
