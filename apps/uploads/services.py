# apps/uploads/services.py
import logging
import time
from pathlib import PurePosixPath
from typing import Optional

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import Count, QuerySet
from django.utils.text import slugify
from celery.exceptions import SoftTimeLimitExceeded

from .broadcasting import broadcast_upload_status
from .exceptions import FileAccessError, IntakeValidationError
from .ingestion import CatalogIngestor, IngestionStats, hash_stream
from .models import FileUpload

logger = logging.getLogger(__name__)

Status = FileUpload.Status


# ---------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------
def validate_upload(uploaded_file):
    if uploaded_file is None:
        raise IntakeValidationError("No file provided.")
    extension = PurePosixPath(uploaded_file.name or "").suffix.lower().lstrip(".")
    if extension not in settings.UPLOAD_ALLOWED_EXTENSIONS:
        allowed = ", ".join(settings.UPLOAD_ALLOWED_EXTENSIONS)
        raise IntakeValidationError(f"Unsupported file type '{extension}'. Allowed: {allowed}.")
    return extension


def generate_unique_filename(original_name: str) -> str:
    path = PurePosixPath(original_name)
    stem = slugify(path.stem) or "upload"
    return f"{int(time.time())}_{stem}{path.suffix.lower()}"


def upload_file(uploaded_file, user=None, enqueue=True) -> FileUpload:
    """
    Store the file, create its FileUpload in `pending` and announce it.
    With `enqueue` the processing chain is dispatched once the transaction commits.
    """
    validate_upload(uploaded_file)
    original_name = PurePosixPath(uploaded_file.name).name
    filename = generate_unique_filename(original_name)

    logger.info(
        "Starting file upload process",
        extra={"original_name": original_name, "stored_name": filename, "size": uploaded_file.size},
    )
    file_path = default_storage.save(f"{settings.UPLOAD_STORAGE_DIR}/{filename}", uploaded_file)

    upload = FileUpload.objects.create(
        user=user,
        filename=PurePosixPath(file_path).name,
        original_name=original_name,
        file_path=file_path,
        status=Status.PENDING,
    )
    logger.info("FileUpload record created", extra={"upload_id": upload.pk, "file_path": file_path})

    broadcast_upload_status(upload, message="File uploaded, waiting for processing")

    if enqueue:
        transaction.on_commit(lambda: dispatch_processing_chain(upload))
    return upload


def dispatch_processing_chain(upload: FileUpload):
    from .tasks import processing_chain

    result = processing_chain(upload.pk, upload.file_path).apply_async()
    logger.info("Upload processing chain dispatched", extra={"upload_id": upload.pk})
    return result


def delete_upload(upload: FileUpload) -> bool:
    """Remove the stored file and the record. Products keep their (now stale) back-reference."""
    if upload.file_path and default_storage.exists(upload.file_path):
        default_storage.delete(upload.file_path)
        logger.info("Physical file deleted", extra={"file_path": upload.file_path})
    upload_id = upload.pk
    upload.delete()
    logger.info("FileUpload record deleted", extra={"upload_id": upload_id})
    return True


def get_user_uploads(user) -> QuerySet:
    return (
        FileUpload.objects.filter(user=user)
        .annotate(products_count=Count("products"))
        .order_by("-created_at")
    )


def get_uploads_for_file_manager() -> QuerySet:
    return (
        FileUpload.objects.select_related("user")
        .annotate(products_count=Count("products"))
        .order_by("-created_at")
    )


def user_owns_upload(upload: FileUpload, user) -> bool:
    return upload.user_id is not None and upload.user_id == user.pk


# ---------------------------------------------------------------------
# Processing state machine
# ---------------------------------------------------------------------
def update_status_and_broadcast(upload: FileUpload, status, message=None, progress=None, error_message=None):
    old_status = upload.status
    upload.transition_to(status, error_message=error_message)
    logger.info(
        "Upload status updated",
        extra={"upload_id": upload.pk, "old_status": old_status, "new_status": status},
    )
    broadcast_upload_status(upload, progress=progress, message=message)
    return upload


def mark_processing(upload: FileUpload, message="File processing started") -> FileUpload:
    """Move to `processing` and announce it; a no-op when already processing."""
    if upload.status == Status.PROCESSING:
        return upload
    return update_status_and_broadcast(upload, Status.PROCESSING, message=message)


def set_upload_processing(upload_id) -> Optional[FileUpload]:
    """First step of the chain."""
    upload = FileUpload.objects.filter(pk=upload_id).first()
    if upload is None:
        logger.warning("FileUpload %s does not exist", upload_id)
        return None
    return mark_processing(upload)


def open_upload_file(file_path: str):
    if not file_path or not default_storage.exists(file_path):
        raise FileAccessError(f"File does not exist at path: {file_path}")
    try:
        return default_storage.open(file_path, "rb")
    except OSError as exc:
        raise FileAccessError(f"Could not open file for reading: {file_path}") from exc


def store_file_hash(upload: FileUpload, file_path: str):
    """Record a SHA-256 of the raw bytes for auditing; failure is logged, never raised (timeouts excepted)."""
    try:
        with open_upload_file(file_path) as handle:
            upload.file_hash = hash_stream(handle)
        upload.save(update_fields=["file_hash", "updated_at"])
    except SoftTimeLimitExceeded:
        raise
    except Exception:
        logger.warning(
            "Could not generate file hash, continuing without it",
            exc_info=True,
            extra={"upload_id": upload.pk},
        )
        return None
    logger.info("File hash stored for tracking", extra={"upload_id": upload.pk, "file_hash": upload.file_hash})
    return upload.file_hash


def ingest_upload(upload_id, file_path=None, ingest_logger=None) -> Optional[IngestionStats]:
    """
    Second step of the chain: ingest the stored file and complete the upload.

    Safe to repeat on retry; rows committed by an earlier attempt are re-applied
    through the idempotent upsert.
    """
    upload = FileUpload.objects.filter(pk=upload_id).first()
    if upload is None:
        logger.warning("FileUpload %s does not exist", upload_id)
        return None
    if upload.is_terminal:
        logger.warning(
            "FileUpload already finished, not processing again",
            extra={"upload_id": upload.pk, "status": upload.status},
        )
        return None

    path = upload.file_path or file_path
    logger.info("Starting file processing", extra={"upload_id": upload.pk, "file_path": path})

    mark_processing(upload)
    store_file_hash(upload, path)

    ingestor = CatalogIngestor(upload_id=upload.pk, logger=ingest_logger)
    with open_upload_file(path) as handle:
        stats = ingestor.ingest_stream(handle)

    complete_upload(upload, stats)
    return stats


def complete_upload(upload: FileUpload, stats: IngestionStats) -> FileUpload:
    upload.mark_processed()
    broadcast_upload_status(upload, progress=100, message=stats.summary())
    update_status_and_broadcast(upload, Status.COMPLETED, message="File processing completed successfully")
    logger.info("File processing job completed successfully", extra={"upload_id": upload.pk, "stats": stats.as_dict()})
    return upload


def fail_upload(upload_id, error_message: str) -> Optional[FileUpload]:
    upload = FileUpload.objects.filter(pk=upload_id).first()
    if upload is None:
        return None
    if upload.is_terminal:
        logger.warning(
            "Not marking finished upload as failed",
            extra={"upload_id": upload.pk, "status": upload.status},
        )
        return upload
    return update_status_and_broadcast(
        upload,
        Status.FAILED,
        message=f"File processing failed: {error_message}",
        error_message=error_message,
    )
