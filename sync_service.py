"""
sync_service.py — Order and shop settings sync for POS client devices.

Clients push their locally created orders and the shop configuration here;
both are upserted (last write wins) and can be read back. The service gets its
SQLAlchemy engine injected so it can be exercised against any store.
"""

import json
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import text

logger = logging.getLogger("pos_sync.sync")

SETTINGS_ID = 1
MONEY_LIMIT = Decimal("100000000")   # DECIMAL(10,2)


class SyncError(Exception):
    """Base error for the sync service."""


class PayloadError(SyncError):
    """Request body is missing fields or has the wrong shape."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------

def require_field(body, field, kind):
    """Pull `field` out of a JSON request body, checking it is a `kind`."""
    if not isinstance(body, dict):
        raise PayloadError("Request body must be a JSON object")
    if field not in body:
        raise PayloadError(f"Missing '{field}' field")
    value = body[field]
    if not isinstance(value, kind):
        expected = "a list" if kind is list else "an object"
        raise PayloadError(f"'{field}' must be {expected}")
    return value


def _string(record, key, label, max_length=None, required=True, non_empty=False):
    value = record.get(key)
    if value is None:
        if required:
            raise PayloadError(f"{label}: '{key}' is required")
        return None
    if not isinstance(value, str):
        raise PayloadError(f"{label}: '{key}' must be a string")
    if non_empty and not value.strip():
        raise PayloadError(f"{label}: '{key}' must not be empty")
    if max_length is not None and len(value) > max_length:
        raise PayloadError(f"{label}: '{key}' is longer than {max_length} characters")
    return value


def _money(record, key, label, default=None):
    value = record.get(key)
    if value is None:
        if default is not None:
            return default
        raise PayloadError(f"{label}: '{key}' is required")
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise PayloadError(f"{label}: '{key}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise PayloadError(f"{label}: '{key}' must be a finite number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise PayloadError(f"{label}: '{key}' must be a number") from None
    if not amount.is_finite():
        raise PayloadError(f"{label}: '{key}' is out of range")
    # Round first: 99999999.995 only overflows DECIMAL(10,2) once rounded
    try:
        amount = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise PayloadError(f"{label}: '{key}' is out of range") from None
    if abs(amount) >= MONEY_LIMIT:
        raise PayloadError(f"{label}: '{key}' is out of range")
    return amount


def parse_timestamp(value):
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.
    A trailing 'Z' is accepted; timestamps without an offset are taken as UTC.
    """
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _timestamp(record, key, label):
    value = record.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PayloadError(f"{label}: '{key}' must be an ISO-8601 string")
    try:
        return parse_timestamp(value)
    except (ValueError, OverflowError):
        raise PayloadError(f"{label}: '{key}' is not a valid ISO-8601 timestamp") from None


def validate_order(order, index):
    label = f"orders[{index}]"
    if not isinstance(order, dict):
        raise PayloadError(f"{label} must be an object")
    if order.get("items") is None:
        raise PayloadError(f"{label}: 'items' is required")
    return {
        "id": _string(order, "id", label, max_length=50, non_empty=True),
        "user_id": _string(order, "userId", label, max_length=50),
        "items": order["items"],
        "total": _money(order, "total", label),
        "tax": _money(order, "tax", label, default=Decimal("0.00")),
        "grand_total": _money(order, "grandTotal", label),
        "created_at": _timestamp(order, "createdAt", label),
        "payment_method": _string(order, "paymentMethod", label, max_length=20),
    }


def validate_orders(orders):
    """Check a whole batch before anything is written."""
    return [validate_order(order, i) for i, order in enumerate(orders)]


def validate_settings(settings):
    label = "settings"
    return {
        "name": _string(settings, "name", label, max_length=255),
        "name_local": _string(settings, "nameLocal", label, max_length=255),
        "address": _string(settings, "address", label),
        "phone": _string(settings, "phone", label, max_length=20),
        "gst_number": _string(settings, "gstNumber", label, max_length=50, required=False),
    }


def parse_page(args, max_limit):
    """
    Read optional ?limit=&offset= query arguments.
    Returns (None, 0) when no limit was asked for.
    """
    raw_limit = args.get("limit")
    raw_offset = args.get("offset")
    if raw_limit in (None, ""):
        if raw_offset not in (None, ""):
            raise PayloadError("'offset' requires 'limit'")
        return None, 0
    try:
        limit = int(raw_limit)
        offset = int(raw_offset) if raw_offset not in (None, "") else 0
    except (TypeError, ValueError):
        raise PayloadError("'limit' and 'offset' must be integers") from None
    if not 1 <= limit <= max_limit:
        raise PayloadError(f"'limit' must be between 1 and {max_limit}")
    if offset < 0:
        raise PayloadError("'offset' must not be negative")
    return limit, offset


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _iso(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    return str(value)


def _number(value):
    if value is None:
        return None
    return float(value)


def _db_time(value):
    return value.isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

ORDER_UPSERT_SQL = text("""
INSERT INTO orders
    (id, user_id, items, total, tax, grand_total, created_at, payment_method, synced_at, cloud_id)
VALUES
    (:id, :user_id, :items, :total, :tax, :grand_total, :created_at, :payment_method,
     :synced_at, :cloud_id)
ON CONFLICT (id) DO UPDATE SET
    items = excluded.items,
    total = excluded.total,
    tax = excluded.tax,
    grand_total = excluded.grand_total,
    payment_method = excluded.payment_method,
    synced_at = excluded.synced_at,
    cloud_id = excluded.cloud_id
""")

SETTINGS_UPSERT_SQL = text("""
INSERT INTO shop_settings
    (id, name, name_local, address, phone, gst_number, created_at, updated_at)
VALUES
    (:id, :name, :name_local, :address, :phone, :gst_number, :now, :now)
ON CONFLICT (id) DO UPDATE SET
    name = excluded.name,
    name_local = excluded.name_local,
    address = excluded.address,
    phone = excluded.phone,
    gst_number = excluded.gst_number,
    updated_at = excluded.updated_at
""")

LIST_ORDERS_SQL = text("SELECT * FROM orders ORDER BY created_at DESC, id")

PAGE_ORDERS_SQL = text(
    "SELECT * FROM orders ORDER BY created_at DESC, id LIMIT :limit OFFSET :offset"
)

GET_SETTINGS_SQL = text("SELECT * FROM shop_settings WHERE id = :id")


class SyncService:
    """Upsert-sync and read-back of orders and the singleton shop settings."""

    def __init__(self, engine, clock=utc_now):
        self.engine = engine
        self.clock = clock

    @property
    def _json_as_text(self):
        # SQLite keeps items as JSON text; PostgreSQL JSONB comes back decoded
        return self.engine.dialect.name != "postgresql"

    # -- orders -------------------------------------------------------------

    def sync_orders(self, orders):
        """
        Upsert each order by id, in the order given. Every order is committed
        on its own, so a failure part-way leaves earlier orders stored.
        Returns the number of orders submitted.
        """
        records = validate_orders(orders)
        with self.engine.connect() as conn:
            for rec in records:
                now = self.clock()
                conn.execute(ORDER_UPSERT_SQL, {
                    "id": rec["id"],
                    "user_id": rec["user_id"],
                    "items": json.dumps(rec["items"]),
                    "total": str(rec["total"]),
                    "tax": str(rec["tax"]),
                    "grand_total": str(rec["grand_total"]),
                    "created_at": _db_time(rec["created_at"] or now),
                    "payment_method": rec["payment_method"],
                    "synced_at": _db_time(now),
                    "cloud_id": f"cloud_{rec['id']}",
                })
                conn.commit()
        logger.info("[SYNC] %d orders synced", len(records))
        return len(records)

    def order_to_dict(self, row):
        items = row["items"]
        if self._json_as_text and isinstance(items, str):
            items = json.loads(items)
        return {
            "id": row["id"],
            "userId": row["user_id"],
            "items": items,
            "total": _number(row["total"]),
            "tax": _number(row["tax"]),
            "grandTotal": _number(row["grand_total"]),
            "createdAt": _iso(row["created_at"]),
            "paymentMethod": row["payment_method"],
            "syncedAt": _iso(row["synced_at"]),
            "cloudId": row["cloud_id"],
        }

    def list_orders(self):
        """All stored orders, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(LIST_ORDERS_SQL).mappings().all()
        return [self.order_to_dict(r) for r in rows]

    def page_orders(self, limit, offset=0):
        """
        One page of orders, newest first.
        Returns (orders, next_offset); next_offset is None on the last page.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                PAGE_ORDERS_SQL, {"limit": limit + 1, "offset": offset}
            ).mappings().all()
        next_offset = offset + limit if len(rows) > limit else None
        return [self.order_to_dict(r) for r in rows[:limit]], next_offset

    # -- settings -----------------------------------------------------------

    def sync_settings(self, settings):
        """Upsert the singleton settings row. created_at is only set on insert."""
        rec = validate_settings(settings)
        with self.engine.connect() as conn:
            conn.execute(SETTINGS_UPSERT_SQL, dict(
                rec, id=SETTINGS_ID, now=_db_time(self.clock())
            ))
            conn.commit()
        logger.info("[SETTINGS] Shop settings synced")

    def get_settings(self):
        """The settings row as a dict, or None before the first sync."""
        with self.engine.connect() as conn:
            row = conn.execute(GET_SETTINGS_SQL, {"id": SETTINGS_ID}).mappings().first()
        if row is None:
            return None
        return {
            "name": row["name"],
            "nameLocal": row["name_local"],
            "address": row["address"],
            "phone": row["phone"],
            "gstNumber": row["gst_number"],
            "createdAt": _iso(row["created_at"]),
            "updatedAt": _iso(row["updated_at"]),
        }

    # -- health -------------------------------------------------------------

    def ping(self):
        """Run a trivial query; raises if the store is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
