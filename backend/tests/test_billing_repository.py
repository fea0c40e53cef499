import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import psycopg2.extras

from backend.app.billing import PeriodStatus
from backend.app.billing.repository import PostgresBillingRepository, _row_to_period, serialize_fields


ISSUED_AT = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, *, fetchone_result=None, fetchall_result=None):
        self.fetchone_result = fetchone_result
        self.fetchall_result = list(fetchall_result or [])
        self.execute_calls = []
        self.closed = False

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.fetchone_result

    def fetchall(self):
        return list(self.fetchall_result)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, *cursors):
        self._cursors = list(cursors)
        self.cursor_calls = []

    def cursor(self, *args, **kwargs):
        self.cursor_calls.append((args, kwargs))
        if not self._cursors:
            raise AssertionError("No cursors configured")
        return self._cursors.pop(0)


def _issued_fields():
    return {
        "customer_id": "cus_001",
        "period": "2026-10",
        "status": PeriodStatus.ISSUED,
        "amount_local_at_issue": Decimal("49980.00"),
        "currency_id": "ARS",
        "preference_id": "pref_1",
        "issued_at": ISSUED_AT,
        "expires_at": ISSUED_AT + timedelta(hours=48),
    }


def test_issued_period_document_keeps_exact_amount():
    document = serialize_fields(_issued_fields())

    assert document["amount_local_at_issue"] == "49980.00"
    assert document["status"] == "issued"

    stored = _row_to_period({"customer_id": "cus_001", "period": "2026-10", "document": document})

    assert stored.amount_local_at_issue == Decimal("49980.00")
    assert str(stored.amount_local_at_issue) == "49980.00"
    assert stored.status is PeriodStatus.ISSUED
    assert stored.issued_at == ISSUED_AT
    assert stored.expires_at == ISSUED_AT + timedelta(hours=48)


def test_period_document_read_from_json_text():
    document = json.dumps(serialize_fields(_issued_fields()))

    stored = _row_to_period({"customer_id": "cus_001", "period": "2026-10", "document": document})

    assert stored.amount_local_at_issue == Decimal("49980.00")
    assert stored.is_paid is False


def test_merge_period_shallow_merges_jsonb_document():
    document = serialize_fields(_issued_fields())
    cursor = FakeCursor(fetchone_result={"customer_id": "cus_001", "period": "2026-10", "document": document})
    connection = FakeConnection(cursor)
    repository = PostgresBillingRepository(conn=connection)

    stored = repository.merge_period("cus_001", "2026-10", _issued_fields())

    query, params = cursor.execute_calls[0]
    assert "ON CONFLICT (doc_id) DO UPDATE" in query
    assert "document = billing_periods.document || EXCLUDED.document" in query
    assert params["doc_id"] == "cus_001_2026-10"
    assert isinstance(params["document"], psycopg2.extras.Json)
    assert params["document"].adapted["amount_local_at_issue"] == "49980.00"
    assert stored.amount_local_at_issue == Decimal("49980.00")
    assert stored.status is PeriodStatus.ISSUED
    assert connection.cursor_calls == [((), {"cursor_factory": psycopg2.extras.RealDictCursor})]
    assert cursor.closed is True


def test_get_period_returns_none_when_missing():
    cursor = FakeCursor(fetchone_result=None)
    repository = PostgresBillingRepository(conn=FakeConnection(cursor))

    assert repository.get_period("cus_001", "2026-10") is None
    assert cursor.execute_calls[0][1] == ("cus_001_2026-10",)


def test_list_periods_orders_newest_first_with_limit():
    rows = [
        {"customer_id": "cus_001", "period": "2026-10", "document": {"status": "issued"}},
        {"customer_id": "cus_001", "period": "2026-09", "document": {"status": "paid"}},
    ]
    cursor = FakeCursor(fetchall_result=rows)
    repository = PostgresBillingRepository(conn=FakeConnection(cursor))

    periods = repository.list_periods("cus_001", limit=12)

    query, params = cursor.execute_calls[0]
    assert "ORDER BY period DESC" in query
    assert params == ("cus_001", 12)
    assert [record.period for record in periods] == ["2026-10", "2026-09"]
    assert periods[1].is_paid is True
