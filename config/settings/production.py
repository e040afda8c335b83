# Production overrides
from .base import *  # noqa
import os
import dj_database_url  # ensure this package is in production requirements

DEBUG = False
ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "").split(",")
SECRET_KEY = os.environ["SECRET_KEY"]

# Database from DATABASE_URL env var. Concurrent workers upsert catalog rows,
# so production is expected to run on a database with row locking (Postgres).
DATABASES["default"] = dj_database_url.parse(os.environ["DATABASE_URL"], conn_max_age=600)

# Use redis for cache in production
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": os.environ.get("REDIS_URL", "redis://redis:6379/0"),
        "OPTIONS": {"CLIENT_CLASS": "django_redis.client.DefaultClient"},
    }
}

# Logging: structured and less verbose
LOGGING["root"]["level"] = os.environ.get("LOG_LEVEL", "INFO")
