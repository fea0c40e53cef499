"""Persistence layer for billing periods, customers and payments."""
from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import BillingPeriod, Customer, PaymentRecord, period_document_id

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS billing_customers (
        customer_id TEXT PRIMARY KEY,
        display_name TEXT,
        plan_id TEXT,
        timezone TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS billing_periods (
        doc_id TEXT PRIMARY KEY,
        customer_id TEXT NOT NULL,
        period TEXT NOT NULL,
        document JSONB NOT NULL DEFAULT '{}'::jsonb,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS billing_periods_customer_period_idx
        ON billing_periods (customer_id, period DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS billing_payments (
        payment_id BIGSERIAL PRIMARY KEY,
        customer_id TEXT NOT NULL,
        period TEXT,
        transaction_amount NUMERIC(14, 2),
        date_approved TIMESTAMPTZ,
        invoice_pdf_url TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS billing_payments_customer_approved_idx
        ON billing_payments (customer_id, date_approved DESC)
    """,
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _to_document_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert domain values into JSON compatible document values."""

    return {key: _to_document_value(value) for key, value in fields.items()}


def _row_to_period(row: dict) -> BillingPeriod:
    document = row.get("document") or {}
    if isinstance(document, str):
        document = json.loads(document)
    return BillingPeriod.model_validate(
        {**document, "customer_id": row["customer_id"], "period": row["period"]}
    )


def _row_to_customer(row: dict) -> Customer:
    return Customer(
        customer_id=row["customer_id"],
        display_name=row.get("display_name"),
        plan_id=row.get("plan_id"),
        timezone=row.get("timezone"),
    )


def _row_to_payment(row: dict) -> PaymentRecord:
    return PaymentRecord(
        customer_id=row["customer_id"],
        period=row.get("period"),
        transaction_amount=row.get("transaction_amount"),
        date_approved=row.get("date_approved"),
        invoice_pdf_url=row.get("invoice_pdf_url"),
    )


class PostgresBillingRepository:
    """Document store for billing periods backed by PostgreSQL JSONB."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT customer_id, display_name, plan_id, timezone
                FROM billing_customers
                WHERE customer_id = %s
                LIMIT 1
                """,
                (customer_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else None

    def get_period(self, customer_id: str, period: str) -> Optional[BillingPeriod]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT customer_id, period, document
                FROM billing_periods
                WHERE doc_id = %s
                LIMIT 1
                """,
                (period_document_id(customer_id, period),),
            )
            row = cursor.fetchone()
            return _row_to_period(row) if row else None

    def merge_period(self, customer_id: str, period: str, fields: Dict[str, Any]) -> BillingPeriod:
        """Insert the period document or shallow-merge ``fields`` into it."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_periods (doc_id, customer_id, period, document)
                VALUES (%(doc_id)s, %(customer_id)s, %(period)s, %(document)s)
                ON CONFLICT (doc_id) DO UPDATE SET
                    document = billing_periods.document || EXCLUDED.document,
                    updated_at = NOW()
                RETURNING customer_id, period, document
                """,
                {
                    "doc_id": period_document_id(customer_id, period),
                    "customer_id": customer_id,
                    "period": period,
                    "document": psycopg2.extras.Json(serialize_fields(fields)),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing period")
            return _row_to_period(row)

    def get_last_payment(self, customer_id: str) -> Optional[PaymentRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT customer_id, period, transaction_amount, date_approved, invoice_pdf_url
                FROM billing_payments
                WHERE customer_id = %s
                ORDER BY date_approved DESC NULLS LAST
                LIMIT 1
                """,
                (customer_id,),
            )
            row = cursor.fetchone()
            return _row_to_payment(row) if row else None

    def list_periods(self, customer_id: str, *, limit: int = 12) -> Sequence[BillingPeriod]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT customer_id, period, document
                FROM billing_periods
                WHERE customer_id = %s
                ORDER BY period DESC
                LIMIT %s
                """,
                (customer_id, limit),
            )
            rows = cursor.fetchall()
            return [_row_to_period(row) for row in rows]


__all__ = ["PostgresBillingRepository", "SCHEMA_STATEMENTS", "managed_connection", "serialize_fields"]
