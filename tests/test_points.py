from sqlalchemy import func

from cleannft.models.admin_action import AdminAction
from cleannft.models.point_balance import PointBalance
from cleannft.models.point_ledger import PointLedger
from cleannft.services.admin_service import log_admin_action
from cleannft.services.ledger_service import append_ledger_entry


def _headers(token):
    return {"Authorization": f"Bearer {token}"}


def test_balance_is_created_at_zero(client, user):
    _, token = user
    resp = client.get("/api/v1/points/balance", headers=_headers(token))
    assert resp.status_code == 200
    assert resp.json()["points"] == 0


def test_duplicate_ledger_key_is_ignored(user, session_scope):
    user_id, _ = user
    with session_scope() as db:
        first = append_ledger_entry(
            db, user_id=user_id, ref_table="waste_events", ref_id="evt-1", delta_points=10, reason_code="PER_KG"
        )
        again = append_ledger_entry(
            db, user_id=user_id, ref_table="waste_events", ref_id="evt-1", delta_points=10, reason_code="PER_KG"
        )
        assert first is not None
        assert again is None

    with session_scope() as db:
        assert db.query(PointLedger).count() == 1
        assert db.query(PointBalance.points).filter(PointBalance.user_id == user_id).scalar() == 10


def test_manual_adjustment_updates_balance(client, user, admin, session_scope):
    user_id, user_token = user
    _, admin_token = admin

    resp = client.post(
        "/api/v1/points/adjust",
        json={"userId": str(user_id), "deltaPoints": 120, "reasonCode": "CORRECTION", "description": "missed scan"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["newBalance"] == 120
    assert body["pointLedger"]["refTable"] == "manual_adjustment"
    assert body["pointLedger"]["refId"].startswith("admin_")

    resp = client.post(
        "/api/v1/points/adjust",
        json={"userId": str(user_id), "deltaPoints": -20, "reasonCode": "REDEMPTION"},
        headers=_headers(admin_token),
    )
    assert resp.json()["newBalance"] == 100

    summary = client.get("/api/v1/points/summary", headers=_headers(user_token)).json()
    assert summary["currentBalance"] == 100
    assert summary["totalEarned"] == 120
    assert summary["totalSpent"] == 20
    assert {s["reasonCode"] for s in summary["reasonStats"]} == {"CORRECTION", "REDEMPTION"}

    with session_scope() as db:
        assert db.query(AdminAction).filter(AdminAction.action == "POINTS_ADJUSTED").count() == 2
        total = db.query(func.sum(PointLedger.delta_points)).filter(PointLedger.user_id == user_id).scalar()
        assert total == 100


def test_manual_adjustment_validation(client, admin):
    _, admin_token = admin
    resp = client.post(
        "/api/v1/points/adjust",
        json={"userId": "not-a-uuid", "deltaPoints": 0, "reasonCode": "X"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 400
    fields = {d["field"] for d in resp.json()["details"]}
    assert {"userId", "deltaPoints"} <= fields


def test_manual_adjustment_unknown_user(client, admin):
    _, admin_token = admin
    resp = client.post(
        "/api/v1/points/adjust",
        json={"userId": "00000000-0000-0000-0000-000000000001", "deltaPoints": 5, "reasonCode": "X"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 404


def test_manual_adjustment_requires_admin(client, user):
    user_id, token = user
    resp = client.post(
        "/api/v1/points/adjust",
        json={"userId": str(user_id), "deltaPoints": 5, "reasonCode": "X"},
        headers=_headers(token),
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"


def test_ledger_listing_filters_and_sorts(client, user, session_scope):
    user_id, token = user
    with session_scope() as db:
        for i, (delta, reason) in enumerate([(5, "PER_KG"), (50, "FIRST_DUMP_BONUS"), (7, "PER_KG")]):
            append_ledger_entry(
                db, user_id=user_id, ref_table="waste_events", ref_id=f"e{i}", delta_points=delta, reason_code=reason
            )

    resp = client.get(
        "/api/v1/points/ledger",
        params={"reasonCode": "PER_KG", "sortBy": "deltaPoints", "sortOrder": "asc"},
        headers=_headers(token),
    )
    body = resp.json()
    assert [r["deltaPoints"] for r in body["ledger"]] == [5, 7]
    assert body["pagination"]["total"] == 2

    history = client.get("/api/v1/points/history", headers=_headers(token)).json()
    assert len(history) == 3


def test_rule_crud_validates_points_expr(client, admin):
    _, admin_token = admin
    headers = _headers(admin_token)

    bad = client.post(
        "/api/v1/points/rules",
        json={
            "code": "PER_KG",
            "description": "per kg",
            "pointsExpr": {"type": "per_gram", "value": 1},
            "activeFrom": "2026-01-01T00:00:00Z",
        },
        headers=headers,
    )
    assert bad.status_code == 400

    created = client.post(
        "/api/v1/points/rules",
        json={
            "code": "PER_KG",
            "description": "per kg",
            "pointsExpr": {"type": "per_kg", "value": 10},
            "activeFrom": "2026-01-01T00:00:00Z",
        },
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["pointsExpr"] == {"type": "per_kg", "value": 10.0}

    dup = client.post(
        "/api/v1/points/rules",
        json={
            "code": "PER_KG",
            "description": "again",
            "pointsExpr": {"type": "flat", "value": 1},
            "activeFrom": "2026-01-01T00:00:00Z",
        },
        headers=headers,
    )
    assert dup.status_code == 409

    updated = client.put(
        "/api/v1/points/rules/PER_KG",
        json={"pointsExpr": {"type": "percentage", "value": 25}},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["pointsExpr"]["type"] == "percentage"

    assert client.put("/api/v1/points/rules/MISSING", json={}, headers=headers).status_code == 404


def test_rule_code_must_be_upper_snake(client, admin):
    _, admin_token = admin
    resp = client.post(
        "/api/v1/points/rules",
        json={
            "code": "per-kg",
            "description": "x",
            "pointsExpr": {"type": "flat", "value": 1},
            "activeFrom": "2026-01-01T00:00:00Z",
        },
        headers=_headers(admin_token),
    )
    assert resp.status_code == 400


def test_audit_failure_does_not_break_caller(admin, session_scope):
    admin_id, _ = admin
    with session_scope() as db:
        # action is NOT NULL, so the insert fails inside its savepoint.
        log_admin_action(db, admin_user_id=admin_id, action=None)
        log_admin_action(db, admin_user_id=admin_id, action="STILL_WORKS")

    with session_scope() as db:
        assert [a.action for a in db.query(AdminAction).all()] == ["STILL_WORKS"]


def test_summary_and_admin_stats(client, user, admin, session_scope):
    user_id, token = user
    _, admin_token = admin
    with session_scope() as db:
        append_ledger_entry(db, user_id=user_id, ref_table="waste_events", ref_id="a", delta_points=40, reason_code="PER_KG")
        append_ledger_entry(db, user_id=user_id, ref_table="waste_events", ref_id="a", delta_points=50, reason_code="FIRST_DUMP_BONUS")
        append_ledger_entry(db, user_id=user_id, ref_table="manual_adjustment", ref_id="m", delta_points=-15, reason_code="CORRECTION")

    summary = client.get("/api/v1/points/summary", headers=_headers(token)).json()
    assert summary["currentBalance"] == 75
    assert summary["totalEarned"] == 90
    assert summary["totalSpent"] == 15
    assert len(summary["recentTransactions"]) == 3
    by_reason = {s["reasonCode"]: (s["totalPoints"], s["count"]) for s in summary["reasonStats"]}
    assert by_reason["PER_KG"] == (40, 1)
    assert by_reason["CORRECTION"] == (-15, 1)

    assert client.get("/api/v1/points/stats", headers=_headers(token)).status_code == 403
    stats = client.get("/api/v1/points/stats", headers=_headers(admin_token)).json()
    assert stats["totalUsersWithPoints"] == 1
    assert stats["totalPointsInCirculation"] == 75
