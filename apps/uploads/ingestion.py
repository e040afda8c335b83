"""
Catalog file ingestion.

Reads a comma-delimited file with a header row, cleans every cell, maps header
names onto catalog fields and upserts one product per `unique_key`. Rows are
streamed; only the set of keys already seen in the file is kept in memory.

A failing row is logged and counted as skipped, it never aborts the file.
An unreadable file or header raises FileAccessError. There is no transaction
around the whole file: rows upserted before a fatal error stay committed, and
re-running the file is safe because the upsert is idempotent.
"""
import csv
import hashlib
import html
import io
import logging
import re
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, Optional

from celery.exceptions import SoftTimeLimitExceeded

from apps.catalog.models import Product
from apps.catalog.services import UpsertOutcome, upsert_product

from .exceptions import FileAccessError, RowProcessingError

logger = logging.getLogger(__name__)

KEY_FIELD = "unique_key"

# Ordered (synonyms, canonical field) pairs; first match wins.
FIELD_SYNONYMS = (
    (("unique_key",), "unique_key"),
    (("product_title",), "product_title"),
    (("product_description",), "product_description"),
    (("style", "style_number"), "style_number"),
    (("sanmar_mainframe_color", "mainframe_color"), "mainframe_color"),
    (("size",), "size"),
    (("color_name",), "color_name"),
    (("piece_price",), "piece_price"),
)

BYTE_ORDER_MARK = "\ufeff"
# C0 controls and DEL, keeping tab, line feed and carriage return
CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")
PRICE_QUANTUM = Decimal("0.01")
HASH_CHUNK_SIZE = 64 * 1024


def _build_synonym_lookup(pairs):
    lookup = {}
    for synonyms, canonical in pairs:
        for synonym in synonyms:
            lookup.setdefault(synonym, canonical)
    return lookup


_SYNONYM_LOOKUP = _build_synonym_lookup(FIELD_SYNONYMS)


def clean_cell(value: Optional[str]) -> Optional[str]:
    """Strip BOM, decode HTML entities, drop control characters and trim. Blank becomes None."""
    if value is None:
        return None
    value = str(value)
    if value.startswith(BYTE_ORDER_MARK):
        value = value[len(BYTE_ORDER_MARK):]
    value = html.unescape(value)
    value = CONTROL_CHARACTERS.sub("", value)
    value = value.strip()
    return value or None


def normalize_field_name(name: Optional[str]) -> str:
    normalized = (name or "").strip().lower()
    normalized = NON_ALPHANUMERIC.sub("_", normalized).strip("_")
    return _SYNONYM_LOOKUP.get(normalized, normalized)


def normalize_header(cells: Iterable[Optional[str]]) -> List[str]:
    return [normalize_field_name(clean_cell(cell)) for cell in cells]


def parse_price(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid piece_price {value!r}") from None
    if not price.is_finite():
        raise ValueError(f"Invalid piece_price {value!r}")
    return price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def product_values(row: Dict[str, Optional[str]]) -> Dict[str, object]:
    """Catalog field values for one cleaned row; columns missing from the file become None."""
    values = {field: row.get(field) for field in Product.CATALOG_FIELDS}
    values["piece_price"] = parse_price(values["piece_price"])
    return values


def hash_stream(stream, algorithm="sha256") -> str:
    digest = hashlib.new(algorithm)
    for chunk in iter(lambda: stream.read(HASH_CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


@dataclass
class IngestionStats:
    rows_seen: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    duplicate_in_file: int = 0

    def record(self, outcome: UpsertOutcome):
        self.processed += 1
        if outcome == UpsertOutcome.CREATED:
            self.created += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def summary(self) -> str:
        return (
            f"Processing complete. Created: {self.created}, Updated: {self.updated}, "
            f"Skipped: {self.skipped}, Duplicates in file: {self.duplicate_in_file}"
        )

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class CatalogIngestor:
    """
    Streams a catalog CSV into the product store.

    `logger` is the sink for structured ingestion events; `upsert` is the store
    write, swappable for tests.
    """

    def __init__(
        self,
        upload_id=None,
        logger: Optional[logging.Logger] = None,
        upsert: Callable[..., UpsertOutcome] = upsert_product,
    ):
        self.upload_id = upload_id
        self.logger = logger or logging.getLogger(__name__)
        self.upsert = upsert

    def ingest_stream(self, stream) -> IngestionStats:
        """Ingest a binary stream (UTF-8, optional BOM)."""
        text = io.TextIOWrapper(stream, encoding="utf-8-sig", errors="replace", newline="")
        try:
            return self.ingest_rows(csv.reader(text))
        finally:
            # leave the underlying stream for the caller to close
            text.detach()

    def ingest_rows(self, reader) -> IngestionStats:
        header = self._read_header(reader)
        self.logger.info(
            "CSV header processed",
            extra={"upload_id": self.upload_id, "header": header},
        )

        stats = IngestionStats()
        seen_keys = set()
        row_number = 1
        columns = len(header)

        for cells in self._iter_rows(reader):
            row_number += 1
            stats.rows_seen += 1
            if len(cells) < columns:
                continue

            row = dict(zip(header, (clean_cell(cell) for cell in cells[:columns])))
            unique_key = row.get(KEY_FIELD)
            if not unique_key:
                stats.skipped += 1
                continue

            if unique_key in seen_keys:
                stats.duplicate_in_file += 1
                continue
            seen_keys.add(unique_key)

            try:
                outcome = self.upsert(unique_key, product_values(row), upload_id=self.upload_id)
            except SoftTimeLimitExceeded:
                # a timeout fails the whole attempt, not just this row
                raise
            except Exception as exc:
                error = RowProcessingError(str(exc), row_number=row_number, unique_key=unique_key)
                self.logger.error(
                    "Failed to create/update product",
                    extra={
                        "upload_id": self.upload_id,
                        "row_number": error.row_number,
                        "unique_key": error.unique_key,
                        "error": str(error),
                    },
                )
                stats.skipped += 1
                continue
            stats.record(outcome)

        self.logger.info(
            "File processing completed",
            extra={"upload_id": self.upload_id, "stats": stats.as_dict()},
        )
        return stats

    def _read_header(self, reader) -> List[str]:
        try:
            cells = next(reader)
        except StopIteration:
            raise FileAccessError("Could not read header row from CSV file") from None
        except (csv.Error, OSError) as exc:
            raise FileAccessError(f"Could not read header row from CSV file: {exc}") from exc
        header = normalize_header(cells)
        if not any(header):
            raise FileAccessError("Could not read header row from CSV file")
        return header

    def _iter_rows(self, reader):
        while True:
            try:
                cells = next(reader)
            except StopIteration:
                return
            except (csv.Error, OSError) as exc:
                raise FileAccessError(f"Could not read CSV file: {exc}") from exc
            yield cells
