import uuid

from payout_engine.tests import factories as f


def test_run_assignment_and_read_ledger(client, db, rail):
    booking = f.create_booking(db)
    bc = f.assign_chef(db, booking, f.create_chef(db, rail))

    r = client.post(f"/api/v1/payouts/chef/assignments/{bc.id}/run")
    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "settled"
    assert body["payout_created"] is True
    assert body["transfer_id"] == "tr_0001"

    again = client.post(f"/api/v1/payouts/chef/assignments/{bc.id}/run").json()
    assert again["payout_created"] is False
    assert again["success"] is True

    ledger = client.get("/api/v1/payouts/ledger", params={"subject_id": str(booking.id)}).json()
    assert len(ledger) == 1
    assert ledger[0]["status"] == "paid"
    assert ledger[0]["amount_cents"] == 5000
    assert ledger[0]["id"] == body["payout_id"]


def test_blocked_payout_is_a_200_with_blockers(client, db, rail):
    booking = f.create_booking(db, completed=False)
    bc = f.assign_chef(db, booking, f.create_chef(db, rail))

    body = client.post(f"/api/v1/payouts/chef/assignments/{bc.id}/run").json()
    assert body["success"] is True
    assert body["payout_created"] is False
    assert body["blockers"] == ["Job must be completed before payout can be processed"]


def test_unknown_variant_is_404(client):
    r = client.post(f"/api/v1/payouts/driver/assignments/{uuid.uuid4()}/run")
    assert r.status_code == 404


def test_override_body_is_accepted(client, db, rail):
    booking = f.create_booking(db)
    bc = f.assign_chef(db, booking, f.create_chef(db, rail))
    r = client.post(
        f"/api/v1/payouts/chef/assignments/{bc.id}/run",
        json={"override": {"user_id": "admin-1", "reason": "launch promo"}},
    )
    assert r.status_code == 200
    assert r.json()["outcome"] == "settled"


def test_subject_run_pays_each_farmer(client, db, rail):
    booking = f.create_booking(db)
    for i in range(3):
        f.assign_farmer(db, booking, f.create_farmer(db, rail, name=f"Farm {i}"))

    r = client.post(f"/api/v1/payouts/farmer/subjects/{booking.id}/run")
    assert r.status_code == 200
    results = r.json()
    assert len(results) == 3
    assert {item["result"]["outcome"] for item in results} == {"settled"}
    assert len(rail.transfers) == 3


def test_sweep_with_empty_statuses_uses_defaults(client):
    # an empty list falls back to the default sweep statuses
    r = client.post("/api/v1/payouts/chef/sweep", json={"statuses": []})
    assert r.status_code == 200
    assert r.json() == []
