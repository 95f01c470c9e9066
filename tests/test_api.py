"""
HTTP-level tests for the /auth routes using FastAPI's TestClient.

Covers status codes and body shapes for every endpoint, the JSON error
envelope, approver authentication and bearer resolution.
"""

TTL_MS = 300_000


def _pair(client, headers, client_id="tv-123"):
    sid = client.post("/auth/register-session", json={"clientId": client_id}).json()["sessionId"]
    r = client.post("/auth/approve-session", json={"sessionId": sid}, headers=headers)
    assert r.status_code == 200
    token = client.get("/auth/check-token", params={"sessionId": sid}).json()["tokens"]["mobileSessionToken"]
    return sid, token


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_register_session(client, clock):
    r = client.post("/auth/register-session", json={"clientId": "tv-123"})
    assert r.status_code == 200
    body = r.json()
    assert body["sessionId"]
    assert body["expiresAt"] == clock.now + TTL_MS


def test_register_session_validation(client):
    r = client.post("/auth/register-session", json={})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "validation_error"
    assert "clientId" in body["error"]

    r = client.post("/auth/register-session", json={"clientId": "   "})
    assert r.status_code == 400


def test_check_token_pending_shape(client):
    sid = client.post("/auth/register-session", json={"clientId": "tv-123"}).json()["sessionId"]
    r = client.get("/auth/check-token", params={"sessionId": sid})
    assert r.status_code == 200
    assert r.json() == {"status": "pending"}


def test_check_token_requires_id(client):
    r = client.get("/auth/check-token")
    assert r.status_code == 400


def test_approve_requires_auth(client):
    sid = client.post("/auth/register-session", json={"clientId": "tv-123"}).json()["sessionId"]
    r = client.post("/auth/approve-session", json={"sessionId": sid})
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized"

    r = client.post("/auth/approve-session", json={"sessionId": sid}, headers={"Authorization": "Bearer junk"})
    assert r.status_code == 401


def test_approve_with_token_for_unknown_user(client, approver_headers):
    sid = client.post("/auth/register-session", json={"clientId": "tv-123"}).json()["sessionId"]
    r = client.post("/auth/approve-session", json={"sessionId": sid}, headers=approver_headers("ghost"))
    assert r.status_code == 401


def test_approve_unknown_session(client, approver_headers):
    r = client.post("/auth/approve-session", json={"sessionId": "missing"}, headers=approver_headers())
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_pairing_round_trip(client, approver_headers):
    sid, token = _pair(client, approver_headers())
    body = client.get("/auth/check-token", params={"sessionId": sid}).json()
    assert body["status"] == "complete"
    assert body["tokens"]["sessionId"] == sid
    assert body["tokens"]["user"] == {
        "id": "u1",
        "email": "a@b.com",
        "name": "Alice",
        "image": "",
        "approved": True,
        "limitedAccess": False,
        "admin": False,
    }

    r = client.get("/auth/user-status", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["authenticated"] is True
    assert r.json()["user"]["id"] == "u1"


def test_approve_conflict(client, approver_headers):
    sid, _ = _pair(client, approver_headers())
    r = client.post("/auth/approve-session", json={"sessionId": sid}, headers=approver_headers("u2", "discord"))
    assert r.status_code == 400
    assert r.json()["code"] == "conflict"


def test_approve_expired(client, clock, approver_headers):
    sid = client.post("/auth/register-session", json={"clientId": "tv-123"}).json()["sessionId"]
    clock.advance(TTL_MS + 1)
    r = client.post("/auth/approve-session", json={"sessionId": sid}, headers=approver_headers())
    assert r.status_code == 400
    assert r.json()["code"] == "expired"
    assert client.get("/auth/check-token", params={"sessionId": sid}).json() == {"status": "expired"}


def test_refresh_token(client, approver_headers):
    sid, t1 = _pair(client, approver_headers())
    r = client.post("/auth/refresh-token", json={"clientId": "tv-123", "sessionId": sid})
    assert r.status_code == 200
    t2 = r.json()["mobileSessionToken"]
    assert t2 != t1

    old = client.get("/auth/user-status", headers={"Authorization": f"Bearer {t1}"})
    assert old.status_code == 401
    assert old.json()["sessionExpired"] is True
    new = client.get("/auth/user-status", headers={"Authorization": f"Bearer {t2}"})
    assert new.status_code == 200


def test_refresh_token_session_header(client, approver_headers):
    sid, _ = _pair(client, approver_headers())
    r = client.post("/auth/refresh-token", json={"clientId": "tv-123"}, headers={"x-session-id": sid})
    assert r.status_code == 200


def test_refresh_token_errors(client, clock, approver_headers):
    r = client.post("/auth/refresh-token", json={"clientId": "tv-123"})
    assert r.status_code == 400

    sid, _ = _pair(client, approver_headers())
    r = client.post("/auth/refresh-token", json={"clientId": "tv-999", "sessionId": sid})
    assert r.status_code == 403

    r = client.post("/auth/refresh-token", json={"clientId": "tv-123", "sessionId": "missing"})
    assert r.status_code == 404

    pending = client.post("/auth/register-session", json={"clientId": "tv-123"}).json()["sessionId"]
    r = client.post("/auth/refresh-token", json={"clientId": "tv-123", "sessionId": pending})
    assert r.status_code == 401

    clock.advance(TTL_MS + 1)
    r = client.post("/auth/refresh-token", json={"clientId": "tv-123", "sessionId": sid})
    assert r.status_code == 401
    assert r.json()["code"] == "expired"


def test_qr_round_trip(client, approver_headers):
    r = client.post(
        "/auth/register-qr-session",
        json={
            "clientId": "tv-1",
            "deviceType": "androidtv",
            "deviceInfo": {"brand": "Acme", "model": "Box", "platform": "android"},
        },
    )
    assert r.status_code == 200
    body = r.json()
    qid = body["qrSessionId"]
    assert body["qrData"]["qrSessionId"] == qid
    assert body["qrData"]["host"] == "testserver"

    info = client.get("/auth/qr-session-info", params={"qrSessionId": qid}).json()
    assert info["status"] == "pending"
    assert info["deviceInfo"]["brand"] == "Acme"
    assert "tokens" not in info

    r = client.post("/auth/authenticate-qr-session", json={"qrSessionId": qid, "provider": "google"})
    assert r.status_code == 200
    assert r.json()["authUrl"] == f"http://testserver/native-signin/google?qrSessionId={qid}"

    r = client.post("/auth/authenticate-qr-session", json={"qrSessionId": qid, "provider": "discord"})
    assert r.status_code == 400

    r = client.post("/auth/approve-qr-session", json={"qrSessionId": qid}, headers=approver_headers())
    assert r.status_code == 200

    check = client.get("/auth/check-qr-token", params={"qrSessionId": qid}).json()
    assert check["status"] == "complete"
    assert check["tokens"]["user"]["id"] == "u1"

    # Refresh falls through to the QR namespace
    r = client.post("/auth/refresh-token", json={"clientId": "tv-1", "sessionId": qid})
    assert r.status_code == 200


def test_qr_register_validation(client):
    r = client.post("/auth/register-qr-session", json={"clientId": "tv-1", "deviceType": "fridge"})
    assert r.status_code == 400
    r = client.post(
        "/auth/register-qr-session",
        json={"clientId": "tv-1", "deviceType": "tv", "deviceInfo": {"brand": "Acme"}},
    )
    assert r.status_code == 400


def test_qr_unknown_session(client):
    assert client.get("/auth/qr-session-info", params={"qrSessionId": "nope"}).status_code == 404
    assert client.get("/auth/check-qr-token", params={"qrSessionId": "nope"}).status_code == 404


def test_qr_deny(client, approver_headers):
    qid = client.post("/auth/register-qr-session", json={"clientId": "tv-1", "deviceType": "tv"}).json()["qrSessionId"]
    assert client.post("/auth/deny-qr-session", json={"qrSessionId": qid}).status_code == 401

    r = client.post("/auth/deny-qr-session", json={"qrSessionId": qid, "reason": "Not me"}, headers=approver_headers())
    assert r.status_code == 200
    check = client.get("/auth/check-qr-token", params={"qrSessionId": qid}).json()
    assert check["status"] == "failed"
    assert check["error"] == "Not me"
    assert "tokens" not in check


def test_qr_approve_expired(client, clock, approver_headers):
    qid = client.post("/auth/register-qr-session", json={"clientId": "tv-1", "deviceType": "tv"}).json()["qrSessionId"]
    clock.advance(TTL_MS + 1)
    r = client.post("/auth/approve-qr-session", json={"qrSessionId": qid}, headers=approver_headers())
    assert r.status_code == 400
    assert client.get("/auth/check-qr-token", params={"qrSessionId": qid}).json()["status"] == "expired"


def test_user_status_without_token(client):
    r = client.get("/auth/user-status")
    assert r.status_code == 401
    assert r.json()["authenticated"] is False


def test_user_status_rejects_web_session_token(client, approver_headers):
    r = client.get("/auth/user-status", headers=approver_headers())
    assert r.status_code == 401


def test_sign_out_revokes(client, approver_headers):
    _, token = _pair(client, approver_headers())
    auth = {"Authorization": f"Bearer {token}"}

    r = client.post("/auth/sign-out", headers=auth)
    assert r.status_code == 200
    assert r.json()["success"] is True

    assert client.get("/auth/user-status", headers=auth).status_code == 401
    assert client.post("/auth/sign-out", headers=auth).status_code == 401


def test_qr_not_pending_guards_return_400(client, approver_headers):
    qid = client.post("/auth/register-qr-session", json={"clientId": "tv-1", "deviceType": "tv"}).json()["qrSessionId"]
    assert client.post("/auth/authenticate-qr-session", json={"qrSessionId": qid, "provider": "google"}).status_code == 200

    # Authenticating through google; an approver signed in with discord cannot finish it
    r = client.post("/auth/approve-qr-session", json={"qrSessionId": qid}, headers=approver_headers("u2", "discord"))
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "QR session is not in pending state", "code": "conflict"}

    r = client.post("/auth/authenticate-qr-session", json={"qrSessionId": qid, "provider": "discord"})
    assert r.status_code == 400
    assert r.json()["code"] == "conflict"

    assert client.post("/auth/approve-qr-session", json={"qrSessionId": qid}, headers=approver_headers()).status_code == 200
    r = client.post("/auth/authenticate-qr-session", json={"qrSessionId": qid, "provider": "google"})
    assert r.status_code == 400
    assert client.get("/auth/check-qr-token", params={"qrSessionId": qid}).json()["tokens"]["user"]["id"] == "u1"
