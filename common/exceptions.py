import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.uploads.exceptions import FileAccessError, IngestionError, IntakeValidationError

logger = logging.getLogger(__name__)

# Domain errors that escape a view, mapped to the status they are reported with
INGESTION_ERROR_STATUS = {
    IntakeValidationError: status.HTTP_400_BAD_REQUEST,
    FileAccessError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def custom_exception_handler(exc, context):
    """
    Attach status code and a machine-friendly error field to responses.
    Ingestion errors are reported instead of becoming a 500.
    """
    if isinstance(exc, IngestionError):
        code = next(
            (code for cls, code in INGESTION_ERROR_STATUS.items() if isinstance(exc, cls)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        logger.warning("Ingestion error in API view", extra={"error": str(exc), "view": repr(context.get("view"))})
        return Response(
            {"detail": str(exc), "error": exc.__class__.__name__, "status_code": code},
            status=code,
        )

    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict):
        response.data.setdefault("status_code", response.status_code)
        if "detail" in response.data:
            response.data["error"] = str(response.data["detail"])
    return response
