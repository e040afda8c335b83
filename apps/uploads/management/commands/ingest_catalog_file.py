# apps/uploads/management/commands/ingest_catalog_file.py
from pathlib import Path

from django.contrib.auth import get_user_model
from django.core.files import File
from django.core.management.base import BaseCommand, CommandError

from apps.uploads import services
from apps.uploads.exceptions import IntakeValidationError
from apps.uploads.tasks import processing_chain


class Command(BaseCommand):
    help = "Register a local catalog CSV as an upload and process it synchronously"

    def add_arguments(self, parser):
        parser.add_argument("path", help="Path to the CSV file")
        parser.add_argument("--user", help="Username that owns the upload")

    def handle(self, *args, **options):
        path = Path(options["path"])
        if not path.is_file():
            raise CommandError(f"File not found: {path}")

        user = None
        if options.get("user"):
            try:
                user = get_user_model().objects.get_by_natural_key(options["user"])
            except get_user_model().DoesNotExist:
                raise CommandError(f"Unknown user: {options['user']}")

        with path.open("rb") as handle:
            try:
                upload = services.upload_file(File(handle, name=path.name), user=user, enqueue=False)
            except IntakeValidationError as exc:
                raise CommandError(str(exc))

        try:
            result = processing_chain(upload.pk, upload.file_path).apply()
            failure = result.result if result.failed() else None
        except Exception as exc:
            # a failed first step surfaces here when the chain hands its result on
            result, failure = None, exc
        upload.refresh_from_db()
        if failure is not None:
            raise CommandError(f"Upload {upload.pk} {upload.status}: {upload.error_message or failure}")

        stats = result.result or {}
        self.stdout.write(
            self.style.SUCCESS(
                f"Upload {upload.pk} {upload.status}. Created: {stats.get('created', 0)}, "
                f"Updated: {stats.get('updated', 0)}, Skipped: {stats.get('skipped', 0)}, "
                f"Duplicates in file: {stats.get('duplicate_in_file', 0)}"
            )
        )
