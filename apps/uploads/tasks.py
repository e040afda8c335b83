# apps/uploads/tasks.py
import logging
from dataclasses import dataclass

from celery import chain, shared_task
from django.conf import settings

from . import services
from .exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget for one chain step: total tries, tolerated exceptions, seconds per attempt."""

    tries: int = 3
    max_exceptions: int = 3
    timeout: int = 300
    retry_delay: int = 10

    @classmethod
    def from_settings(cls):
        config = getattr(settings, "UPLOAD_PROCESSING", {})
        return cls(
            tries=config.get("TRIES", cls.tries),
            max_exceptions=config.get("MAX_EXCEPTIONS", cls.max_exceptions),
            timeout=config.get("TIMEOUT", cls.timeout),
            retry_delay=config.get("RETRY_DELAY", cls.retry_delay),
        )

    def allows_retry(self, attempt, exceptions_seen):
        return attempt < self.tries and exceptions_seen < self.max_exceptions

    def countdown(self, attempt):
        return self.retry_delay * attempt


POLICY = RetryPolicy.from_settings()


def _retry_or_fail(task, exc, upload_id, args, exceptions_seen):
    """
    Re-enqueue the failing step while the policy allows it, otherwise mark the
    upload failed and raise RetryExhaustedError.
    """
    attempt = task.request.retries + 1
    exceptions_seen += 1
    logger.error(
        "Upload processing step failed",
        exc_info=exc,
        extra={
            "upload_id": upload_id,
            "task": task.name,
            "attempt": attempt,
            "exceptions_seen": exceptions_seen,
        },
    )
    if POLICY.allows_retry(attempt, exceptions_seen):
        raise task.retry(
            exc=exc,
            args=args,
            kwargs={"exceptions_seen": exceptions_seen},
            countdown=POLICY.countdown(attempt),
        )

    logger.error(
        "File processing job permanently failed",
        extra={"upload_id": upload_id, "attempts": attempt, "error": str(exc)},
    )
    services.fail_upload(upload_id, str(exc) or exc.__class__.__name__)
    raise RetryExhaustedError(
        f"Upload {upload_id} failed after {attempt} attempt(s): {exc}",
        upload_id=upload_id,
        attempts=attempt,
    ) from exc


@shared_task(
    bind=True,
    name="uploads.set_upload_processing",
    max_retries=POLICY.tries - 1,
    soft_time_limit=POLICY.timeout,
    time_limit=POLICY.timeout + 30,
)
def set_upload_processing(self, upload_id, exceptions_seen=0):
    """Chain step 1: mark the upload as processing and announce it."""
    try:
        upload = services.set_upload_processing(upload_id)
    except Exception as exc:
        _retry_or_fail(self, exc, upload_id, (upload_id,), exceptions_seen)
    return upload.pk if upload else None


@shared_task(
    bind=True,
    name="uploads.process_upload",
    max_retries=POLICY.tries - 1,
    soft_time_limit=POLICY.timeout,
    time_limit=POLICY.timeout + 30,
    acks_late=True,
)
def process_upload(self, upload_id, file_path=None, exceptions_seen=0):
    """Chain step 2: ingest the file and complete the upload."""
    try:
        stats = services.ingest_upload(upload_id, file_path=file_path)
    except Exception as exc:
        _retry_or_fail(self, exc, upload_id, (upload_id, file_path), exceptions_seen)
    return stats.as_dict() if stats else None


def processing_chain(upload_id, file_path=None):
    """Both steps for one upload, strictly in order; step 2 never runs if step 1 fails."""
    return chain(
        set_upload_processing.si(upload_id),
        process_upload.si(upload_id, file_path),
    )
