from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db.models import QuerySet
from django.test import TestCase
from rest_framework.test import APIClient

from apps.uploads.models import FileUpload
from apps.uploads import services as upload_services
from . import services
from .models import Product
from .services import UpsertOutcome


def catalog_values(**overrides):
    values = {
        "product_title": "Classic Tee",
        "product_description": "Heavyweight cotton",
        "style_number": "PC61",
        "mainframe_color": "Navy",
        "size": "L",
        "color_name": "Navy",
        "piece_price": Decimal("6.49"),
    }
    values.update(overrides)
    return values


class UpsertProductTest(TestCase):
    def setUp(self):
        self.upload = FileUpload.objects.create(filename="a.csv", original_name="a.csv", file_path="uploads/a.csv")
        self.other_upload = FileUpload.objects.create(filename="b.csv", original_name="b.csv", file_path="uploads/b.csv")

    def test_create_then_unchanged_then_updated(self):
        self.assertEqual(services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk), UpsertOutcome.CREATED)
        self.assertEqual(services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk), UpsertOutcome.UNCHANGED)
        self.assertEqual(
            services.upsert_product("K1", catalog_values(size="XL"), upload_id=self.upload.pk),
            UpsertOutcome.UPDATED,
        )
        self.assertEqual(Product.objects.count(), 1)
        self.assertEqual(Product.objects.get().size, "XL")

    def test_unchanged_row_still_moves_bookkeeping_pointer(self):
        services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk)
        outcome = services.upsert_product("K1", catalog_values(), upload_id=self.other_upload.pk)
        self.assertEqual(outcome, UpsertOutcome.UNCHANGED)
        self.assertEqual(Product.objects.get().updated_by_upload_id, self.other_upload.pk)

    def test_missing_fields_overwrite_with_null(self):
        services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk)
        services.upsert_product("K1", catalog_values(color_name=None), upload_id=self.upload.pk)
        self.assertIsNone(Product.objects.get().color_name)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValueError):
            services.upsert_product("K1", {"weight": "1kg"})
        self.assertFalse(Product.objects.exists())

    def test_changed_fields_reports_old_and_new(self):
        services.upsert_product("K1", catalog_values())
        product = services.get_product("K1")
        changes = services.changed_fields(product, catalog_values(piece_price=Decimal("7.00")))
        self.assertEqual(list(changes), ["piece_price"])
        self.assertEqual(changes["piece_price"]["old"], Decimal("6.49"))

    def racing_insert(self):
        """Make the first Product lookup miss, as if another worker inserted the row right after it."""
        real_get = QuerySet.get
        missed = []

        def get(queryset, *args, **kwargs):
            if queryset.model is Product and not missed:
                missed.append(kwargs)
                raise Product.DoesNotExist
            return real_get(queryset, *args, **kwargs)

        return mock.patch.object(QuerySet, "get", get), missed

    def test_concurrent_insert_with_same_values_is_unchanged(self):
        services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk)
        race, missed = self.racing_insert()
        with race:
            outcome = services.upsert_product("K1", catalog_values(), upload_id=self.other_upload.pk)
        self.assertEqual(len(missed), 1)
        self.assertEqual(outcome, UpsertOutcome.UNCHANGED)
        self.assertEqual(Product.objects.count(), 1)
        self.assertEqual(Product.objects.get().updated_by_upload_id, self.other_upload.pk)

    def test_concurrent_insert_with_new_values_is_updated(self):
        services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk)
        race, missed = self.racing_insert()
        with race:
            outcome = services.upsert_product("K1", catalog_values(size="XL"), upload_id=self.other_upload.pk)
        self.assertEqual(len(missed), 1)
        self.assertEqual(outcome, UpsertOutcome.UPDATED)
        self.assertEqual(Product.objects.count(), 1)
        self.assertEqual(Product.objects.get().size, "XL")

    def test_last_upload_is_none_after_upload_deleted(self):
        upload_id = self.upload.pk
        services.upsert_product("K1", catalog_values(), upload_id=upload_id)
        upload_services.delete_upload(self.upload)

        product = Product.objects.get(unique_key="K1")
        self.assertEqual(product.updated_by_upload_id, upload_id)
        self.assertIsNone(product.last_upload)


class ProductQueryTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.client.force_authenticate(get_user_model().objects.create_user(username="ana", password="pw"))
        services.upsert_product("A-1", catalog_values(product_title="Alpha Hoodie", piece_price=Decimal("20.00")))
        services.upsert_product("B-2", catalog_values(product_title="Beta Tee", color_name="Red", piece_price=Decimal("5.00")))
        services.upsert_product("C-3", catalog_values(product_title="Gamma Cap", piece_price=Decimal("9.00")))

    def keys(self, **params):
        res = self.client.get("/api/v1/products/", params)
        self.assertEqual(res.status_code, 200)
        return [row["unique_key"] for row in res.data["results"]]

    def test_search_matches_any_text_field(self):
        self.assertEqual(self.keys(search="red"), ["B-2"])
        self.assertEqual(self.keys(search="hoodie"), ["A-1"])
        self.assertEqual(self.keys(search="c-3"), ["C-3"])

    def test_sort_by_allowed_field(self):
        self.assertEqual(self.keys(sort="piece_price", direction="asc"), ["B-2", "C-3", "A-1"])
        self.assertEqual(self.keys(sort="piece_price"), ["A-1", "C-3", "B-2"])

    def test_unknown_sort_field_falls_back_to_default(self):
        expected = list(Product.objects.order_by("-updated_at").values_list("unique_key", flat=True))
        self.assertEqual(self.keys(sort="password", direction="asc"), expected)

    def test_filters_echo_defaults(self):
        self.assertEqual(
            services.get_filters({}),
            {"search": "", "sort": "updated_at", "direction": "desc"},
        )


class ProductApiTest(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="ana", password="pw", first_name="Ana")
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.upload = FileUpload.objects.create(
            user=self.user, filename="a.csv", original_name="a.csv", file_path="uploads/a.csv"
        )
        services.upsert_product("K1", catalog_values(), upload_id=self.upload.pk)

    def test_list_includes_filters(self):
        res = self.client.get("/api/v1/products/", {"search": "tee"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["meta"]["total"], 1)
        self.assertEqual(res.data["results"][0]["piece_price"], "6.49")
        self.assertEqual(res.data["filters"]["search"], "tee")

    def test_detail_includes_last_upload(self):
        product = Product.objects.get(unique_key="K1")
        res = self.client.get(f"/api/v1/products/{product.pk}/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["updated_by_upload"]["id"], self.upload.pk)
        self.assertEqual(res.data["updated_by_upload"]["user"]["name"], "Ana")

    def test_detail_with_stale_upload(self):
        product = Product.objects.get(unique_key="K1")
        FileUpload.objects.filter(pk=self.upload.pk).delete()
        res = self.client.get(f"/api/v1/products/{product.pk}/")
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.data["updated_by_upload"])

    def test_requires_authentication(self):
        res = APIClient().get("/api/v1/products/")
        self.assertEqual(res.status_code, 401)
