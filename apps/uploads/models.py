# apps/uploads/models.py
from django.conf import settings
from django.db import models
from django.utils import timezone

from .exceptions import InvalidStatusTransition


class FileUpload(models.Model):
    """Lifecycle of one uploaded catalog file: pending -> processing -> completed | failed."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    # processing -> processing re-announces progress on the same state
    ALLOWED_TRANSITIONS = {
        Status.PENDING: (Status.PROCESSING, Status.FAILED),
        Status.PROCESSING: (Status.PROCESSING, Status.COMPLETED, Status.FAILED),
        Status.COMPLETED: (),
        Status.FAILED: (),
    }

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="file_uploads",
    )
    filename = models.CharField(max_length=255)
    original_name = models.CharField(max_length=255)
    file_path = models.CharField(max_length=1024)
    file_hash = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    error_message = models.TextField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"FileUpload {self.pk} {self.original_name} [{self.status}]"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, status):
        return status in self.ALLOWED_TRANSITIONS.get(self.status, ())

    def transition_to(self, status, error_message=None):
        if not self.can_transition_to(status):
            raise InvalidStatusTransition(
                f"Upload {self.pk} cannot move from {self.status} to {status}",
                current=self.status,
                requested=status,
            )
        self.status = status
        fields = ["status", "updated_at"]
        if status == self.Status.FAILED:
            self.error_message = error_message
            fields.append("error_message")
        self.save(update_fields=fields)

    def mark_processed(self):
        self.processed_at = timezone.now()
        self.save(update_fields=["processed_at", "updated_at"])

    def owner_summary(self):
        if self.user is None:
            return None
        return {
            "id": self.user.pk,
            "name": self.user.get_full_name() or self.user.get_username(),
        }
