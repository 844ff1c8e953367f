"""
tests/integration/test_periodic.py — Daily records and the monthly expense.

Endpoints covered:
  PUT  /households/:id/daily-records            → 200 upsert one UTC day
  GET  /households/:id/daily-records?month&year → 200 records + totals
  POST /households/:id/monthly-expense          → 201 pooled monthly expense
"""

from __future__ import annotations

from decimal import Decimal

from .conftest import (
    auth_headers,
    make_user,
    set_primary_holder,
    setup_household,
    token_for,
)


def _put_day(client, token: str, household_id: int, day: str, quantity):
    return client.put(
        f"/api/v1/households/{household_id}/daily-records",
        json={"day": day, "quantity": quantity},
        headers=auth_headers(token),
    )


def _month(client, token: str, household_id: int, month: int, year: int):
    return client.get(
        f"/api/v1/households/{household_id}/daily-records",
        query_string={"month": month, "year": year},
        headers=auth_headers(token),
    )


def _materialize(client, token: str, household_id: int, **body):
    return client.post(
        f"/api/v1/households/{household_id}/monthly-expense",
        json=body,
        headers=auth_headers(token),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Daily records
# ═══════════════════════════════════════════════════════════════════════════

class TestDailyRecords:

    def test_upsert_same_day_overwrites(self, client, app):
        users, hh = setup_household(client, app, ("alice", "bob"))

        first = _put_day(client, users["alice"]["token"], hh["id"], "2026-10-03", "1.5")
        second = _put_day(client, users["bob"]["token"], hh["id"], "2026-10-03", "2")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()["data"]["id"] == first.get_json()["data"]["id"]

        month = _month(client, users["alice"]["token"], hh["id"], 10, 2026).get_json()["data"]
        assert len(month["records"]) == 1
        assert month["records"][0]["quantity"] == "2.000"

    def test_timestamp_is_reduced_to_utc_day(self, client, app):
        users, hh = setup_household(client, app, ("alice",))

        resp = _put_day(
            client, users["alice"]["token"], hh["id"], "2026-11-01T02:00:00+05:30", "1",
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["day"] == "2026-10-31"

    def test_negative_quantity_rejected(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        resp = _put_day(client, users["alice"]["token"], hh["id"], "2026-10-03", "-1")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_QUANTITY"

    def test_quantity_precision_rejected(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        resp = _put_day(client, users["alice"]["token"], hh["id"], "2026-10-03", "1.0005")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_QUANTITY"

    def test_invalid_day_rejected(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        resp = _put_day(client, users["alice"]["token"], hh["id"], "yesterday", "1")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "day"

    def test_upsert_is_audited_with_before_on_overwrite(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        token = users["alice"]["token"]
        _put_day(client, token, hh["id"], "2026-10-03", "1")
        _put_day(client, token, hh["id"], "2026-10-03", "3")

        entries = client.get(
            f"/api/v1/households/{hh['id']}/activity",
            headers=auth_headers(token),
        ).get_json()["data"]

        assert [e["action"] for e in entries] == [
            "periodic-record-upserted",
            "periodic-record-upserted",
        ]
        newest, oldest = entries
        assert oldest["before"] is None
        assert newest["before"]["quantity"] == "1.000"
        assert newest["after"]["quantity"] == "3.000"

    def test_non_member_cannot_record(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        outsider = make_user(app, "mallory")
        resp = _put_day(client, token_for(app, outsider), hh["id"], "2026-10-03", "1")
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Month listing
# ═══════════════════════════════════════════════════════════════════════════

class TestMonthListing:

    def test_records_ascending_with_totals(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        token = users["alice"]["token"]
        for day, qty in (("2026-10-09", "1.5"), ("2026-10-02", "2"), ("2026-09-30", "9")):
            _put_day(client, token, hh["id"], day, qty)

        data = _month(client, token, hh["id"], 10, 2026).get_json()["data"]

        assert [r["day"] for r in data["records"]] == ["2026-10-02", "2026-10-09"]
        assert data["totals"] == {
            "total_quantity": "3.500",
            "rate_per_unit": "52",
            "total_amount": "182.00",
        }

    def test_empty_month_has_zero_totals(self, client, app):
        users, hh = setup_household(client, app, ("alice",))

        resp = _month(client, users["alice"]["token"], hh["id"], 2, 2026)

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["records"] == []
        assert data["totals"]["total_amount"] == "0.00"

    def test_month_out_of_range(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        resp = _month(client, users["alice"]["token"], hh["id"], 13, 2026)
        assert resp.status_code == 400
        err = resp.get_json()["error"]
        assert err["code"] == "INVALID_FIELD"
        assert err["field"] == "month"


# ═══════════════════════════════════════════════════════════════════════════
# Monthly expense
# ═══════════════════════════════════════════════════════════════════════════

class TestMonthlyExpense:

    def _forty_units(self, client, token, household_id):
        for day in range(1, 21):
            resp = _put_day(client, token, household_id, f"2026-10-{day:02d}", "2")
            assert resp.status_code == 200

    def test_forty_units_become_one_pooled_expense(self, client, app):
        users, hh = setup_household(client, app, ("alice", "bob"))
        alice = users["alice"]
        set_primary_holder(client, alice["token"], hh["id"], alice["id"])
        self._forty_units(client, users["bob"]["token"], hh["id"])

        resp = _materialize(client, users["bob"]["token"], hh["id"], month=10, year=2026)

        assert resp.status_code == 201, resp.get_json()
        expense = resp.get_json()["data"]
        assert expense["amount"] == "2080.00"
        assert expense["paid_by_user_id"] == alice["id"]
        assert expense["created_by_user_id"] == users["bob"]["id"]
        assert expense["obligations"] == []
        assert expense["category"] == "Milk"
        assert expense["expense_date"] == "2026-10-31"
        assert expense["note"] == "Monthly milk for October 2026: 40 L @ 52/L"

        entries = client.get(
            f"/api/v1/households/{hh['id']}/activity",
            headers=auth_headers(alice["token"]),
            query_string={"limit": 1},
        ).get_json()["data"]
        assert entries[0]["action"] == "periodic-aggregate-created"
        assert entries[0]["expense_id"] == expense["id"]

    def test_explicit_payer(self, client, app):
        users, hh = setup_household(client, app, ("alice", "bob"))
        self._forty_units(client, users["alice"]["token"], hh["id"])

        resp = _materialize(
            client, users["alice"]["token"], hh["id"],
            month=10, year=2026, payer_id=users["bob"]["id"],
        )

        assert resp.status_code == 201
        assert resp.get_json()["data"]["paid_by_user_id"] == users["bob"]["id"]

    def test_no_records_is_404(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        set_primary_holder(client, users["alice"]["token"], hh["id"], users["alice"]["id"])

        resp = _materialize(client, users["alice"]["token"], hh["id"], month=10, year=2026)

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NO_DATA_FOR_PERIOD"

    def test_month_of_zero_quantities_is_404(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        token = users["alice"]["token"]
        set_primary_holder(client, token, hh["id"], users["alice"]["id"])
        _put_day(client, token, hh["id"], "2026-10-01", "0")
        _put_day(client, token, hh["id"], "2026-10-02", "0")

        listing = _month(client, token, hh["id"], 10, 2026).get_json()["data"]
        assert len(listing["records"]) == 2
        assert listing["totals"]["total_amount"] == "0.00"

        resp = _materialize(client, token, hh["id"], month=10, year=2026)

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NO_DATA_FOR_PERIOD"
        expenses = client.get(
            f"/api/v1/households/{hh['id']}/expenses",
            headers=auth_headers(token),
        ).get_json()["data"]
        assert expenses["total"] == 0

    def test_total_beyond_money_column_is_rejected(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "PERIODIC_RATE_PER_UNIT", Decimal("10000"))
        users, hh = setup_household(client, app, ("alice",))
        token = users["alice"]["token"]
        set_primary_holder(client, token, hh["id"], users["alice"]["id"])
        _put_day(client, token, hh["id"], "2026-10-01", "9999999.999")

        resp = _materialize(client, token, hh["id"], month=10, year=2026)

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_AMOUNT"

    def test_no_payer_configured(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        _put_day(client, users["alice"]["token"], hh["id"], "2026-10-01", "1")

        resp = _materialize(client, users["alice"]["token"], hh["id"], month=10, year=2026)

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "NO_PAYER_CONFIGURED"

    def test_payer_must_be_member(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        outsider = make_user(app, "mallory")
        _put_day(client, users["alice"]["token"], hh["id"], "2026-10-01", "1")

        resp = _materialize(
            client, users["alice"]["token"], hh["id"], month=10, year=2026, payer_id=outsider,
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "PAYER_NOT_MEMBER"

    def test_missing_year(self, client, app):
        users, hh = setup_household(client, app, ("alice",))
        resp = _materialize(client, users["alice"]["token"], hh["id"], month=10)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"
