"""
Middleware: request logging.
"""
import time
import logging
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(MiddlewareMixin):
    def process_request(self, request):
        request._start_time = time.time()
        logger.debug(f"REQ START {request.method} {request.get_full_path()}")

    def process_response(self, request, response):
        duration = (time.time() - getattr(request, "_start_time", time.time())) * 1000.0
        logger.debug(f"REQ END {request.method} {request.get_full_path()} {response.status_code} {duration:.2f}ms")
        return response
