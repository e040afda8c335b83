# Test overrides: in-memory database, eager Celery, in-memory broadcast transport
from .base import *  # noqa
import tempfile

DEBUG = False
SECRET_KEY = "test-secret-key"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

MEDIA_ROOT = Path(tempfile.mkdtemp(prefix="catalog-media-"))

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False

UPLOAD_PROCESSING = {**UPLOAD_PROCESSING, "RETRY_DELAY": 0}

UPLOAD_BROADCAST = {
    **UPLOAD_BROADCAST,
    "BACKEND": "apps.uploads.broadcasting.InMemoryTransport",
}

LOGGING["root"]["level"] = "WARNING"
