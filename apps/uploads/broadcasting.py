# apps/uploads/broadcasting.py
"""
Best-effort live status updates for uploads.

Every message carries a fresh snapshot of the upload; the persisted status stays
the source of truth for clients that reconnect or poll. Publishing never raises.
"""
import functools
import json
import logging

import redis
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.signals import setting_changed
from django.dispatch import receiver
from django.utils import timezone
from django.utils.module_loading import import_string

from .exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class RedisTransport:
    """Publishes on a Redis pub/sub channel; returns how many subscribers received it."""

    def __init__(self, url, socket_timeout=5, **options):
        self.client = redis.Redis.from_url(url, socket_timeout=socket_timeout)

    def publish(self, channel, payload):
        try:
            return self.client.publish(channel, payload)
        except redis.RedisError as exc:
            raise NotificationDeliveryError(f"Redis publish to {channel} failed: {exc}") from exc


class InMemoryTransport:
    """
    Keeps published messages in `InMemoryTransport.outbox` (used by the test settings).

    The outbox is shared by every instance and is never emptied automatically;
    tests clear it in `setUp`.
    """

    outbox = []

    def __init__(self, url=None, **options):
        pass

    def publish(self, channel, payload):
        self.outbox.append({"channel": channel, "payload": json.loads(payload)})
        return 1


class UploadBroadcaster:
    def __init__(self, transport, channel, event, logger=None):
        self.transport = transport
        self.channel = channel
        self.event = event
        self.logger = logger or logging.getLogger(__name__)

    def snapshot(self, upload):
        return {
            "id": upload.pk,
            "filename": upload.filename,
            "original_name": upload.original_name,
            "status": upload.status,
            "error_message": upload.error_message,
            "processed_at": upload.processed_at,
            "created_at": upload.created_at,
            "updated_at": upload.updated_at,
            "products_count": upload.products.count(),
            "user": upload.owner_summary(),
        }

    def build_message(self, upload, progress=None, message=None):
        return {
            "event": self.event,
            "upload": self.snapshot(upload),
            "progress": progress,
            "message": message,
            "timestamp": timezone.now().isoformat(),
        }

    def broadcast(self, upload, progress=None, message=None):
        """Publish one status event for `upload`. Returns False instead of raising on failure; a task timeout still propagates."""
        try:
            payload = json.dumps(self.build_message(upload, progress, message), cls=DjangoJSONEncoder)
            receivers = self.transport.publish(self.channel, payload)
        except SoftTimeLimitExceeded:
            raise
        except Exception:
            self.logger.exception(
                "Broadcast failed",
                extra={"upload_id": upload.pk, "status": upload.status, "progress": progress},
            )
            return False

        self.logger.info(
            "Broadcast event sent",
            extra={
                "upload_id": upload.pk,
                "status": upload.status,
                "progress": progress,
                "receivers": receivers,
            },
        )
        return True


@functools.lru_cache(maxsize=None)
def get_broadcaster():
    config = settings.UPLOAD_BROADCAST
    options = {k.lower(): v for k, v in config.get("OPTIONS", {}).items()}
    transport = import_string(config["BACKEND"])(config.get("URL"), **options)
    return UploadBroadcaster(transport, channel=config["CHANNEL"], event=config["EVENT"])


@receiver(setting_changed)
def reset_broadcaster(*, setting, **kwargs):
    if setting == "UPLOAD_BROADCAST":
        get_broadcaster.cache_clear()


def broadcast_upload_status(upload, progress=None, message=None):
    return get_broadcaster().broadcast(upload, progress=progress, message=message)
