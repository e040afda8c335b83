import hashlib
import io
import logging
import tempfile
from decimal import Decimal
from pathlib import Path
from unittest import mock

from celery.exceptions import SoftTimeLimitExceeded
from django.contrib.auth import get_user_model
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.catalog.services import UpsertOutcome
from . import services, tasks
from .broadcasting import InMemoryTransport
from .exceptions import (
    FileAccessError,
    IntakeValidationError,
    InvalidStatusTransition,
    NotificationDeliveryError,
    RetryExhaustedError,
)
from .ingestion import CatalogIngestor, clean_cell, normalize_header, parse_price
from .models import FileUpload

Status = FileUpload.Status

CATALOG_CSV = (
    b"UNIQUE_KEY,PRODUCT_TITLE,STYLE#,SANMAR_MAINFRAME_COLOR,SIZE,COLOR_NAME,PIECE_PRICE\n"
    b"K1,Classic Tee,PC61,Navy,L,Navy,6.49\n"
    b"K2,Zip Hoodie &amp; Pocket,PC78,Black,XL,Jet Black,21.5\n"
)


def statuses(outbox):
    return [(m["payload"]["upload"]["status"], m["payload"]["progress"]) for m in outbox]


class CleaningTest(TestCase):
    def test_clean_cell(self):
        self.assertEqual(clean_cell("\ufeff  Caf&eacute;\x07 "), "Café")
        self.assertEqual(clean_cell("line\tbreak"), "line\tbreak")
        self.assertIsNone(clean_cell("   "))
        self.assertIsNone(clean_cell(None))

    def test_header_synonyms(self):
        header = normalize_header(["\ufeffUNIQUE_KEY", " Style ", "SANMAR_MAINFRAME_COLOR", "Piece Price", "Weight"])
        self.assertEqual(header, ["unique_key", "style_number", "mainframe_color", "piece_price", "weight"])

    def test_parse_price(self):
        self.assertEqual(parse_price("21.5"), Decimal("21.50"))
        self.assertEqual(parse_price("1.005"), Decimal("1.01"))
        self.assertIsNone(parse_price(None))
        for bad in ("abc", "NaN", "Infinity"):
            with self.assertRaises(ValueError):
                parse_price(bad)


class CatalogIngestorTest(TestCase):
    def ingest(self, data, **kwargs):
        return CatalogIngestor(**kwargs).ingest_stream(io.BytesIO(data))

    def test_creates_products_and_is_idempotent(self):
        stats = self.ingest(CATALOG_CSV)
        self.assertEqual((stats.created, stats.updated, stats.skipped), (2, 0, 0))
        hoodie = Product.objects.get(unique_key="K2")
        self.assertEqual(hoodie.product_title, "Zip Hoodie & Pocket")
        self.assertEqual(hoodie.style_number, "PC78")
        self.assertEqual(hoodie.mainframe_color, "Black")
        self.assertEqual(hoodie.piece_price, Decimal("21.50"))

        again = self.ingest(CATALOG_CSV)
        self.assertEqual((again.created, again.updated, again.unchanged), (0, 0, 2))
        self.assertEqual(Product.objects.count(), 2)

    def test_duplicate_keys_in_file_keep_first(self):
        data = CATALOG_CSV + b"K1,Second Tee,PC61,Navy,L,Navy,9.99\n"
        stats = self.ingest(data)
        self.assertEqual(stats.duplicate_in_file, 1)
        self.assertEqual(Product.objects.get(unique_key="K1").product_title, "Classic Tee")

    def test_missing_key_is_skipped(self):
        stats = self.ingest(CATALOG_CSV + b" ,Orphan,X1,Red,M,Red,1.00\n")
        self.assertEqual(stats.skipped, 1)
        self.assertEqual(Product.objects.count(), 2)

    def test_short_rows_ignored_and_long_rows_truncated(self):
        data = CATALOG_CSV + b"K3,Short\n" + b"K4,Cap,C1,Red,OS,Red,3.00,extra,cells\n"
        stats = self.ingest(data)
        self.assertEqual(stats.rows_seen, 4)
        self.assertEqual(stats.created, 3)
        self.assertFalse(Product.objects.filter(unique_key="K3").exists())
        self.assertEqual(Product.objects.get(unique_key="K4").piece_price, Decimal("3.00"))

    def test_bad_row_does_not_stop_the_file(self):
        data = (
            b"unique_key,product_title,piece_price\n"
            b"K1,Tee,1.00\n"
            b"K2,Hat,not-a-price\n"
            b"K3,Cap,2.00\n"
        )
        stats = self.ingest(data)
        self.assertEqual((stats.created, stats.skipped), (2, 1))
        self.assertEqual(set(Product.objects.values_list("unique_key", flat=True)), {"K1", "K3"})

    def test_store_failure_is_isolated_to_the_row(self):
        calls = []

        def flaky_upsert(unique_key, values, upload_id=None):
            calls.append(unique_key)
            if unique_key == "K1":
                raise RuntimeError("deadlock")
            return UpsertOutcome.CREATED

        sink = mock.Mock(spec=logging.Logger)
        stats = self.ingest(CATALOG_CSV, upsert=flaky_upsert, logger=sink)
        self.assertEqual(calls, ["K1", "K2"])
        self.assertEqual((stats.created, stats.skipped), (1, 1))
        sink.error.assert_called_once()
        self.assertEqual(sink.error.call_args.kwargs["extra"]["row_number"], 2)

    def test_timeout_is_not_counted_as_skipped_row(self):
        with mock.patch("apps.uploads.ingestion.product_values", side_effect=SoftTimeLimitExceeded()):
            with self.assertRaises(SoftTimeLimitExceeded):
                self.ingest(CATALOG_CSV)
        self.assertFalse(Product.objects.exists())

    def test_empty_file_raises(self):
        with self.assertRaises(FileAccessError):
            self.ingest(b"")
        with self.assertRaises(FileAccessError):
            self.ingest(b" , \n")

    def test_summary(self):
        stats = self.ingest(CATALOG_CSV + b"K1,Again,PC61,Navy,L,Navy,6.49\n")
        self.assertEqual(
            stats.summary(),
            "Processing complete. Created: 2, Updated: 0, Skipped: 0, Duplicates in file: 1",
        )


class FileUploadModelTest(TestCase):
    def test_terminal_status_cannot_move(self):
        upload = FileUpload.objects.create(filename="a.csv", original_name="a.csv", file_path="uploads/a.csv")
        upload.transition_to(Status.PROCESSING)
        upload.transition_to(Status.PROCESSING)
        upload.transition_to(Status.COMPLETED)
        with self.assertRaises(InvalidStatusTransition):
            upload.transition_to(Status.FAILED, error_message="late")
        upload.refresh_from_db()
        self.assertEqual(upload.status, Status.COMPLETED)
        self.assertIsNone(upload.error_message)

    def test_pending_cannot_complete(self):
        upload = FileUpload.objects.create(filename="a.csv", original_name="a.csv", file_path="uploads/a.csv")
        self.assertFalse(upload.can_transition_to(Status.COMPLETED))


class UploadPipelineTest(TestCase):
    def setUp(self):
        InMemoryTransport.outbox.clear()
        self.user = get_user_model().objects.create_user(username="ana", password="pw", email="ana@example.com")

    def upload(self, data=CATALOG_CSV, name="catalog.csv"):
        with self.captureOnCommitCallbacks(execute=True):
            upload = services.upload_file(SimpleUploadedFile(name, data), user=self.user)
        upload.refresh_from_db()
        return upload

    def test_full_pipeline_status_sequence(self):
        upload = self.upload()
        self.assertEqual(upload.status, Status.COMPLETED)
        self.assertIsNotNone(upload.processed_at)
        self.assertIsNone(upload.error_message)
        self.assertEqual(
            statuses(InMemoryTransport.outbox),
            [(Status.PENDING, None), (Status.PROCESSING, None), (Status.PROCESSING, 100), (Status.COMPLETED, None)],
        )
        channels = {m["channel"] for m in InMemoryTransport.outbox}
        self.assertEqual(channels, {"file-uploads"})
        last = InMemoryTransport.outbox[-1]["payload"]
        self.assertEqual(last["event"], "file-upload.status-changed")
        self.assertEqual(last["upload"]["products_count"], 2)
        self.assertEqual(last["upload"]["user"]["name"], "ana")
        self.assertIn("Created: 2", InMemoryTransport.outbox[2]["payload"]["message"])

    def test_stored_file_and_hash(self):
        upload = self.upload()
        self.assertRegex(upload.filename, r"^\d+_catalog.*\.csv$")
        self.assertTrue(default_storage.exists(upload.file_path))
        self.assertEqual(upload.file_hash, hashlib.sha256(CATALOG_CSV).hexdigest())
        self.assertEqual(
            set(Product.objects.values_list("updated_by_upload_id", flat=True)),
            {upload.pk},
        )

    def test_hash_failure_is_tolerated(self):
        with mock.patch("apps.uploads.services.hash_stream", side_effect=OSError("read error")):
            upload = self.upload()
        self.assertEqual(upload.status, Status.COMPLETED)
        self.assertIsNone(upload.file_hash)

    def test_timeout_during_ingestion_fails_upload(self):
        with mock.patch("apps.uploads.ingestion.product_values", side_effect=SoftTimeLimitExceeded()) as values:
            upload = self.upload()
        self.assertEqual(values.call_count, 3)
        self.assertEqual(upload.status, Status.FAILED)
        self.assertTrue(upload.error_message)
        self.assertFalse(Product.objects.exists())
        self.assertEqual(InMemoryTransport.outbox[-1]["payload"]["upload"]["status"], Status.FAILED)

    def test_timeout_while_hashing_fails_upload(self):
        with mock.patch("apps.uploads.services.hash_stream", side_effect=SoftTimeLimitExceeded()):
            upload = self.upload()
        self.assertEqual(upload.status, Status.FAILED)
        self.assertFalse(Product.objects.exists())

    def test_broadcast_failure_does_not_affect_processing(self):
        with mock.patch.object(InMemoryTransport, "publish", side_effect=NotificationDeliveryError("down")):
            upload = self.upload()
        self.assertEqual(upload.status, Status.COMPLETED)
        self.assertEqual(Product.objects.count(), 2)

    def test_rejects_unsupported_extension(self):
        with self.assertRaises(IntakeValidationError):
            services.upload_file(SimpleUploadedFile("catalog.pdf", CATALOG_CSV), user=self.user)
        self.assertFalse(FileUpload.objects.exists())

    def test_finished_upload_is_not_processed_again(self):
        upload = self.upload()
        InMemoryTransport.outbox.clear()
        self.assertIsNone(services.ingest_upload(upload.pk))
        self.assertEqual(InMemoryTransport.outbox, [])

    def test_missing_upload_is_ignored(self):
        self.assertIsNone(services.set_upload_processing(999999))
        self.assertIsNone(services.ingest_upload(999999))

    def test_retries_then_marks_failed(self):
        upload = FileUpload.objects.create(
            user=self.user, filename="a.csv", original_name="a.csv", file_path="uploads/missing.csv"
        )
        with mock.patch("apps.uploads.services.ingest_upload", side_effect=RuntimeError("disk unavailable")) as ingest:
            result = tasks.process_upload.apply(args=[upload.pk])

        self.assertEqual(ingest.call_count, 3)
        self.assertTrue(result.failed())
        self.assertIsInstance(result.result, RetryExhaustedError)
        upload.refresh_from_db()
        self.assertEqual(upload.status, Status.FAILED)
        self.assertEqual(upload.error_message, "disk unavailable")

    def test_missing_file_fails_upload(self):
        upload = FileUpload.objects.create(
            user=self.user, filename="a.csv", original_name="a.csv", file_path="uploads/missing.csv"
        )
        tasks.processing_chain(upload.pk, upload.file_path).apply()
        upload.refresh_from_db()
        self.assertEqual(upload.status, Status.FAILED)
        self.assertIn("File does not exist", upload.error_message)
        self.assertEqual(InMemoryTransport.outbox[-1]["payload"]["upload"]["status"], Status.FAILED)

    def test_failed_upload_stays_failed(self):
        upload = FileUpload.objects.create(filename="a.csv", original_name="a.csv", file_path="uploads/a.csv")
        services.fail_upload(upload.pk, "boom")
        services.fail_upload(upload.pk, "again")
        upload.refresh_from_db()
        self.assertEqual(upload.error_message, "boom")


class InMemoryTransportTest(TestCase):
    def setUp(self):
        InMemoryTransport.outbox.clear()

    def test_outbox_is_shared_until_cleared(self):
        InMemoryTransport().publish("file-uploads", '{"event": "a"}')
        InMemoryTransport().publish("file-uploads", '{"event": "b"}')
        self.assertEqual([m["payload"]["event"] for m in InMemoryTransport.outbox], ["a", "b"])
        InMemoryTransport.outbox.clear()
        self.assertEqual(InMemoryTransport.outbox, [])


class RetryPolicyTest(TestCase):
    def test_limits(self):
        policy = tasks.RetryPolicy(tries=3, max_exceptions=2, timeout=10, retry_delay=5)
        self.assertTrue(policy.allows_retry(1, 1))
        self.assertFalse(policy.allows_retry(2, 2))
        self.assertFalse(policy.allows_retry(3, 0))
        self.assertEqual(policy.countdown(2), 10)


class FileUploadApiTest(TestCase):
    def setUp(self):
        InMemoryTransport.outbox.clear()
        self.owner = get_user_model().objects.create_user(username="owner", password="pw")
        self.other = get_user_model().objects.create_user(username="other", password="pw")
        self.client = APIClient()
        self.client.force_authenticate(self.owner)

    def post_file(self, name="catalog.csv", data=CATALOG_CSV):
        with self.captureOnCommitCallbacks(execute=True):
            return self.client.post("/api/v1/file-uploads/", {"file": SimpleUploadedFile(name, data)}, format="multipart")

    def test_upload_accepted_and_processed(self):
        res = self.post_file()
        self.assertEqual(res.status_code, 202)
        self.assertEqual(res.data["status"], Status.PENDING)
        self.assertEqual(res.data["original_name"], "catalog.csv")
        upload = FileUpload.objects.get(pk=res.data["id"])
        self.assertEqual(upload.status, Status.COMPLETED)

    def test_bad_extension(self):
        res = self.post_file(name="catalog.exe")
        self.assertEqual(res.status_code, 400)
        self.assertIn("file", res.data)

    def test_storage_error_reported(self):
        with mock.patch("apps.uploads.services.upload_file", side_effect=FileAccessError("disk full")):
            res = self.post_file()
        self.assertEqual(res.status_code, 422)
        self.assertEqual(res.data["error"], "FileAccessError")

    def test_list_only_own_uploads(self):
        self.post_file()
        FileUpload.objects.create(user=self.other, filename="b.csv", original_name="b.csv", file_path="uploads/b.csv")
        res = self.client.get("/api/v1/file-uploads/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(res.data), 1)
        self.assertEqual(res.data[0]["products_count"], 2)
        self.assertIsNone(res.data[0]["error_message"])

    def test_file_manager_lists_everyone(self):
        FileUpload.objects.create(user=self.other, filename="b.csv", original_name="b.csv", file_path="uploads/b.csv")
        self.post_file()
        res = self.client.get("/api/v1/file-manager/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual({row["user"]["name"] for row in res.data}, {"owner", "other"})

    def test_retrieve_is_owner_only(self):
        upload = FileUpload.objects.create(user=self.other, filename="b.csv", original_name="b.csv", file_path="uploads/b.csv")
        self.assertEqual(self.client.get(f"/api/v1/file-uploads/{upload.pk}/").status_code, 403)
        self.assertEqual(self.client.delete(f"/api/v1/file-uploads/{upload.pk}/").status_code, 403)

    def test_detail_lists_products(self):
        upload_id = self.post_file().data["id"]
        res = self.client.get(f"/api/v1/file-uploads/{upload_id}/")
        self.assertEqual(res.status_code, 200)
        prices = {p["unique_key"]: p["piece_price"] for p in res.data["products"]}
        self.assertEqual(prices, {"K1": "6.49", "K2": "21.50"})

    def test_delete_keeps_products(self):
        upload_id = self.post_file().data["id"]
        file_path = FileUpload.objects.get(pk=upload_id).file_path
        res = self.client.delete(f"/api/v1/file-uploads/{upload_id}/")
        self.assertEqual(res.status_code, 204)
        self.assertFalse(FileUpload.objects.filter(pk=upload_id).exists())
        self.assertFalse(default_storage.exists(file_path))
        self.assertEqual(Product.objects.count(), 2)
        self.assertIsNone(Product.objects.first().last_upload)


class IngestCommandTest(TestCase):
    def setUp(self):
        InMemoryTransport.outbox.clear()
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name, data):
        path = Path(self.tmp.name) / name
        path.write_bytes(data)
        return str(path)

    def test_ingests_file(self):
        out = io.StringIO()
        call_command("ingest_catalog_file", self.write("catalog.csv", CATALOG_CSV), stdout=out)
        self.assertIn("completed. Created: 2", out.getvalue())
        self.assertEqual(FileUpload.objects.get().status, Status.COMPLETED)

    def test_empty_file_fails(self):
        with self.assertRaises(CommandError):
            call_command("ingest_catalog_file", self.write("empty.csv", b""), stdout=io.StringIO())
        self.assertEqual(FileUpload.objects.get().status, Status.FAILED)

    def test_unknown_user(self):
        with self.assertRaises(CommandError):
            call_command("ingest_catalog_file", self.write("catalog.csv", CATALOG_CSV), user="nobody")
