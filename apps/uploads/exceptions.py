# apps/uploads/exceptions.py
# Task results round-trip exceptions through JSON as (type, message), so every
# class here must be constructible from its message alone.


class IngestionError(Exception):
    """Base class for upload ingestion failures."""


class IntakeValidationError(IngestionError):
    """The uploaded file was rejected before anything was stored or enqueued."""


class FileAccessError(IngestionError):
    """The stored file is missing, unreadable, or has no readable header row."""


class RowProcessingError(IngestionError):
    def __init__(self, message, row_number=None, unique_key=None):
        super().__init__(message)
        self.row_number = row_number
        self.unique_key = unique_key


class NotificationDeliveryError(IngestionError):
    """Publishing a status event to the live-update channel failed."""


class RetryExhaustedError(IngestionError):
    def __init__(self, message, upload_id=None, attempts=None):
        super().__init__(message)
        self.upload_id = upload_id
        self.attempts = attempts


class InvalidStatusTransition(IngestionError):
    def __init__(self, message, current=None, requested=None):
        super().__init__(message)
        self.current = current
        self.requested = requested
