ADMIN = {"X-Admin-Key": "test-admin-key"}


def test_requires_admin_key(client):
    resp = client.post("/v1/admin/monetization/users/u1/reset")
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "forbidden"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]

    wrong = client.post("/v1/admin/monetization/users/u1/reset", headers={"X-Admin-Key": "nope"})
    assert wrong.status_code == 403


def test_plan_change_unlocks_feature(client):
    user = {"X-User-Id": "up-1"}
    assert client.post("/v1/monetization/features/voice_clone/use", headers=user).status_code == 403

    resp = client.post("/v1/admin/monetization/users/up-1/plan", headers=ADMIN, json={"plan": "creator"})
    assert resp.status_code == 200
    assert resp.json()["currentPlan"] == "creator"
    assert resp.json()["usage"]["voice_clones_used"]["total"] == 1

    assert client.post("/v1/monetization/features/voice_clone/use", headers=user).status_code == 200


def test_plan_change_unknown_plan(client):
    resp = client.post("/v1/admin/monetization/users/up-2/plan", headers=ADMIN, json={"plan": "enterprise"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_reset_restores_quota(client):
    user = {"X-User-Id": "rs-1"}
    client.post("/v1/monetization/features/video_generation/use", headers=user)
    assert client.post("/v1/monetization/features/video_generation/use", headers=user).status_code == 403

    assert client.post("/v1/admin/monetization/users/rs-1/reset", headers=ADMIN).status_code == 200
    assert client.post("/v1/monetization/features/video_generation/use", headers=user).status_code == 200


def test_reset_unknown_user_is_404(client):
    resp = client.post("/v1/admin/monetization/users/nobody/reset", headers=ADMIN)
    assert resp.status_code == 404


def test_refund(client):
    user = {"X-User-Id": "rf-1"}
    client.post("/v1/monetization/features/account_analysis/use", headers=user)

    resp = client.post(
        "/v1/admin/monetization/users/rf-1/refund",
        headers=ADMIN,
        json={"usage_field": "account_analysis_used"},
    )
    assert resp.status_code == 200
    usage = client.get("/v1/monetization/usage", headers=user).json()
    assert usage["usage"]["account_analysis_used"]["used"] == 0


def test_refund_unknown_field(client):
    resp = client.post(
        "/v1/admin/monetization/users/rf-2/refund",
        headers=ADMIN,
        json={"usage_field": "minutes_streamed"},
    )
    assert resp.status_code == 400


def test_cache_invalidate(client, app):
    client.get("/v1/monetization/usage", headers={"X-User-Id": "ci-1"})
    client.get("/v1/monetization/usage", headers={"X-User-Id": "ci-1"})
    assert len(app.state.monetization.cache) >= 1

    resp = client.post("/v1/admin/monetization/cache/invalidate", headers=ADMIN, json={"user_id": "ci-1"})
    assert resp.status_code == 200
    assert resp.json()["removed"] == 1

    assert client.post("/v1/admin/monetization/cache/invalidate", headers=ADMIN, json={}).status_code == 400

    resp = client.post("/v1/admin/monetization/cache/invalidate", headers=ADMIN, json={"all": True})
    assert resp.status_code == 200
    assert len(app.state.monetization.cache) == 0
