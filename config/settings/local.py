from .base import *  # noqa
import dj_database_url

DEBUG = True
ALLOWED_HOSTS = ["*"]

# Local DB: keep sqlite unless DATABASE_URL provided.
DATABASE_URL = os.environ.get("DATABASE_URL", None)
if DATABASE_URL:
    DATABASES["default"] = dj_database_url.parse(DATABASE_URL)

# In local, make email backend console
EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"
