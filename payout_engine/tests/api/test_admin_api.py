import hashlib
import hmac
import json
import time
import uuid

from payout_engine.tests import factories as f


def test_guardrail_config_upsert_and_list(client):
    r = client.put("/api/v1/guardrails/configs", json={"min_gross_margin_pct": 35, "max_bonus_plus_tier_pct": 20})
    assert r.status_code == 200
    global_id = r.json()["id"]

    r = client.put(
        "/api/v1/guardrails/configs",
        json={"region_code": "ca-sf", "min_gross_margin_pct": 40, "max_bonus_plus_tier_pct": 15, "block_or_warn": False},
    )
    assert r.status_code == 200
    assert r.json()["region_code"] == "CA-SF"

    r = client.put("/api/v1/guardrails/configs", json={"min_gross_margin_pct": 30, "max_bonus_plus_tier_pct": 20})
    assert r.json()["id"] == global_id

    configs = client.get("/api/v1/guardrails/configs").json()
    assert [c["region_code"] for c in configs] == [None, "CA-SF"]
    assert configs[0]["min_gross_margin_pct"] == 30


def test_guardrail_config_validation(client):
    r = client.put("/api/v1/guardrails/configs", json={"min_gross_margin_pct": 140, "max_bonus_plus_tier_pct": 20})
    assert r.status_code == 422


def test_cooperative_period_lifecycle(client, db, rail):
    farmer = f.create_farmer(db, rail)
    f.create_member(db, impact=1, farmer=farmer)

    r = client.post("/api/v1/cooperative/periods", json={"period": "2026-09", "period_type": "monthly", "total_profit_cents": 4200})
    assert r.status_code == 201
    period_id = r.json()["id"]

    dup = client.post("/api/v1/cooperative/periods", json={"period": "2026-09", "period_type": "monthly", "total_profit_cents": 1})
    assert dup.status_code == 409

    # not closed yet: rows are prepared, the transfer is blocked
    early = client.post(f"/api/v1/cooperative/periods/{period_id}/distribute", json={}).json()
    assert len(early["payouts_created"]) == 1
    assert early["results"][0]["result"]["outcome"] == "preconditions_unmet"

    assert client.post(f"/api/v1/cooperative/periods/{period_id}/close").status_code == 200
    assert client.post(f"/api/v1/cooperative/periods/{period_id}/funded").json()["funded_at"] is not None

    late = client.post(f"/api/v1/cooperative/periods/{period_id}/distribute", json={}).json()
    assert late["payouts_created"] == []
    assert [res["result"]["outcome"] for res in late["results"]] == ["settled"]
    assert rail.transfers[0]["amount"] == 4200
    assert rail.transfers[0]["destination"] == farmer.stripe_account_id

    # nothing left for the scheduler sweep
    assert client.post("/api/v1/payouts/cooperative/sweep").json() == []


def test_unknown_period_is_404(client):
    assert client.post(f"/api/v1/cooperative/periods/{uuid.uuid4()}/close").status_code == 404


def test_impact_score_recalculation_feeds_shares(client, db):
    chef = f.create_chef(db)
    bc = f.assign_chef(db, f.create_booking(db), chef)
    bc.payout_status = "paid"
    db.commit()
    member = f.create_member(db, impact=0, chef=chef, name="A")
    f.create_member(db, impact=9, name="B")

    body = client.post("/api/v1/cooperative/impact-scores/recalculate").json()
    assert body["members_updated"] == 2
    assert body["scores"][str(member.id)] == 30

    shares = client.post("/api/v1/cooperative/shares/calculate").json()["shares"]
    assert float(shares[str(member.id)]) == 100.0


def test_share_calculation(client, db):
    f.create_member(db, impact=3, name="A")
    f.create_member(db, impact=1, name="B")
    body = client.post("/api/v1/cooperative/shares/calculate").json()
    assert body["shares_calculated"] == 2
    assert sorted(float(v) for v in body["shares"].values()) == [25.0, 75.0]


def test_account_onboarding_flow(client, db, rail):
    chef = f.create_chef(db, account=False, connected=False, payouts_enabled=False)

    created = client.post(f"/api/v1/accounts/chef/{chef.id}").json()
    assert created["stripe_account_id"] is not None
    assert created["connect_status"] == "pending"

    link = client.post(f"/api/v1/accounts/chef/{chef.id}/onboarding-link", json={"return_url": "https://app.example/ok"})
    assert link.status_code == 200
    assert created["stripe_account_id"] in link.json()["url"]

    rail.set_account(created["stripe_account_id"], payouts_enabled=True)
    refreshed = client.post(f"/api/v1/accounts/chef/{chef.id}/refresh").json()
    assert refreshed["connect_status"] == "connected"
    assert refreshed["payouts_enabled"] is True


def test_account_errors_map_to_http(client, db, rail):
    chef = f.create_chef(db, rail)
    assert client.post(f"/api/v1/accounts/chef/{uuid.uuid4()}/refresh").status_code == 404

    rail.unavailable = True
    r = client.post(f"/api/v1/accounts/chef/{chef.id}/refresh")
    assert r.status_code == 503
    assert r.json()["detail"] == "Stripe is not configured"


WEBHOOK_SECRET = "whsec_test"


def signed_headers(payload: bytes, secret: str = WEBHOOK_SECRET):
    ts = str(int(time.time()))
    sig = hmac.new(secret.encode(), ts.encode() + b"." + payload, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


def account_updated(account_id, **flags):
    return json.dumps({"type": "account.updated", "data": {"object": {"id": account_id, **flags}}}).encode()


def test_account_updated_webhook_syncs_payee(app, client, db):
    app.state.settings = app.state.settings.model_copy(update={"stripe_webhook_secret": WEBHOOK_SECRET})
    chef = f.create_chef(db, connected=False, payouts_enabled=False)

    payload = account_updated(chef.stripe_account_id, details_submitted=True, charges_enabled=True, payouts_enabled=True)
    r = client.post("/api/v1/accounts/webhook", content=payload, headers=signed_headers(payload))
    assert r.status_code == 200
    body = r.json()
    assert body["handled"] is True
    assert body["payee_id"] == str(chef.id)
    assert body["connect_status"] == "connected"

    db.refresh(chef)
    assert chef.connect_status == "connected"
    assert chef.payouts_enabled is True
    assert chef.onboarded_at is not None


def test_webhook_rejects_bad_signature(app, client, db):
    app.state.settings = app.state.settings.model_copy(update={"stripe_webhook_secret": WEBHOOK_SECRET})
    chef = f.create_chef(db, connected=False, payouts_enabled=False)

    payload = account_updated(chef.stripe_account_id, charges_enabled=True, payouts_enabled=True)
    r = client.post("/api/v1/accounts/webhook", content=payload, headers=signed_headers(payload, "whsec_other"))
    assert r.status_code == 400

    db.refresh(chef)
    assert chef.connect_status == "pending"


def test_webhook_acknowledges_other_events_and_unknown_accounts(app, client):
    app.state.settings = app.state.settings.model_copy(update={"stripe_webhook_secret": WEBHOOK_SECRET})

    payload = json.dumps({"type": "payout.paid", "data": {"object": {}}}).encode()
    r = client.post("/api/v1/accounts/webhook", content=payload, headers=signed_headers(payload))
    assert r.json() == {"received": True, "handled": False, "event_type": "payout.paid", "payee_id": None, "connect_status": None}

    payload = account_updated("acct_nobody", payouts_enabled=True)
    r = client.post("/api/v1/accounts/webhook", content=payload, headers=signed_headers(payload))
    assert r.status_code == 200
    assert r.json()["handled"] is False


def test_webhook_without_secret_is_503(client):
    payload = account_updated("acct_x")
    assert client.post("/api/v1/accounts/webhook", content=payload, headers=signed_headers(payload)).status_code == 503
