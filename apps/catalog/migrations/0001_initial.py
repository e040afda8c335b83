from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("uploads", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("unique_key", models.CharField(max_length=255, unique=True)),
                ("product_title", models.CharField(blank=True, max_length=255, null=True)),
                ("product_description", models.TextField(blank=True, null=True)),
                ("style_number", models.CharField(blank=True, max_length=100, null=True)),
                ("mainframe_color", models.CharField(blank=True, max_length=100, null=True)),
                ("size", models.CharField(blank=True, max_length=50, null=True)),
                ("color_name", models.CharField(blank=True, max_length=100, null=True)),
                ("piece_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "updated_by_upload",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="products",
                        to="uploads.fileupload",
                    ),
                ),
            ],
            options={
                "ordering": ["-updated_at"],
                "indexes": [
                    models.Index(fields=["style_number"], name="catalog_pro_style_n_6f1c2a_idx"),
                    models.Index(fields=["updated_at"], name="catalog_pro_updated_3b9e4d_idx"),
                ],
            },
        ),
    ]
