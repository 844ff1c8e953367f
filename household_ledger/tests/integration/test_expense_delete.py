"""
tests/integration/test_expense_delete.py — DELETE /expenses/:id and the audit trail.

Rules verified:
  - the creator or a household admin may delete; anyone else gets FORBIDDEN (403)
  - a deleted expense disappears from the list and from GET
  - exactly one "deleted" audit entry is written, with a populated before snapshot
  - stored attachments are removed after the delete commits
"""

from __future__ import annotations

import io
import json

from .conftest import auth_headers, make_expense, setup_household


def _delete(client, token: str, expense_id: int):
    return client.delete(f"/api/v1/expenses/{expense_id}", headers=auth_headers(token))


def _activity(client, token: str, household_id: int) -> list[dict]:
    return client.get(
        f"/api/v1/households/{household_id}/activity",
        headers=auth_headers(token),
    ).get_json()["data"]


def test_creator_deletes_expense(client, app):
    users, hh = setup_household(client, app, ("alice", "bob"))
    bob = users["bob"]
    expense = make_expense(client, bob["token"], hh["id"], "40.00").get_json()["data"]

    resp = _delete(client, bob["token"], expense["id"])

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"deleted": True, "expense_id": expense["id"]}

    listing = client.get(
        f"/api/v1/households/{hh['id']}/expenses",
        headers=auth_headers(bob["token"]),
    ).get_json()["data"]
    assert listing["total"] == 0

    gone = client.get(f"/api/v1/expenses/{expense['id']}", headers=auth_headers(bob["token"]))
    assert gone.status_code == 404


def test_admin_deletes_someone_elses_expense(client, app):
    users, hh = setup_household(client, app, ("alice", "bob"))
    expense = make_expense(client, users["bob"]["token"], hh["id"], "40.00").get_json()["data"]

    resp = _delete(client, users["alice"]["token"], expense["id"])

    assert resp.status_code == 200


def test_other_member_cannot_delete(client, app):
    users, hh = setup_household(client, app)
    expense = make_expense(client, users["bob"]["token"], hh["id"], "40.00").get_json()["data"]

    resp = _delete(client, users["carol"]["token"], expense["id"])

    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_delete_writes_one_audit_entry_with_before_snapshot(client, app):
    users, hh = setup_household(client, app, ("alice", "bob"))
    alice = users["alice"]
    expense = make_expense(
        client, alice["token"], hh["id"], "40.00", note="internet",
    ).get_json()["data"]

    _delete(client, alice["token"], expense["id"])

    entries = _activity(client, alice["token"], hh["id"])
    deleted = [e for e in entries if e["action"] == "deleted"]
    assert len(deleted) == 1
    entry = deleted[0]
    assert entry["expense_id"] == expense["id"]
    assert entry["after"] is None
    assert entry["before"]["amount"] == "40.00"
    assert entry["before"]["note"] == "internet"
    assert entry["before"]["obligations"] == [{
        "user_id": users["bob"]["id"],
        "amount": "40.00",
        "settled": False,
        "settled_at": None,
        "note": None,
    }]
    # newest first: the delete precedes the create
    assert [e["action"] for e in entries] == ["deleted", "created"]


def test_delete_unknown_expense(client, app):
    users, _ = setup_household(client, app, ("alice",))
    resp = _delete(client, users["alice"]["token"], 31337)
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"


def test_delete_removes_stored_attachments(client, app, store):
    users, hh = setup_household(client, app, ("alice",))
    token = users["alice"]["token"]
    created = client.post(
        f"/api/v1/households/{hh['id']}/expenses",
        data={
            "payload": json.dumps({"amount": "9.99"}),
            "files": [(io.BytesIO(b"r"), "receipt.png")],
        },
        content_type="multipart/form-data",
        headers=auth_headers(token),
    ).get_json()["data"]
    public_id = created["attachments"][0]["public_id"]

    resp = _delete(client, token, created["id"])

    assert resp.status_code == 200
    assert public_id in store.deleted
    assert store.objects == {}
