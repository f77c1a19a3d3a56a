from urllib.parse import parse_qs, urlparse

from bonsbras.auth.router import oauth_client
from bonsbras.main import app
from bonsbras.models.models import ClientProfile, ProProfile, User

from conftest import make_client, auth_headers


def _signup(client, **overrides):
    body = {
        "email": "Marie@Example.com",
        "password": "motdepasse123",
        "role": "client",
        "full_name": "Marie Durand",
        "phone": "514-555-0101",
    }
    body.update(overrides)
    return client.post("/auth/signup", json=body)


def test_client_signup_creates_profile_and_session(client, db):
    resp = _signup(client)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["role"] == "client"
    assert body["redirect_to"] == "/dashboard/client"

    user = db.query(User).filter(User.email == "marie@example.com").one()
    assert user.user_metadata["role"] == "client"
    assert db.query(ClientProfile).filter(ClientProfile.user_id == user.id).one().phone == "514-555-0101"

    session = client.get("/auth/session", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert session.status_code == 200
    assert session.json()["role"] == "client"


def test_pro_signup_lands_on_onboarding(client, db):
    resp = _signup(
        client,
        email="pierre@example.com",
        role="professional",
        full_name="Pierre Martin",
        company_name="Martin Construction",
        license_number="5678-1234-01",
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["redirect_to"] == "/onboarding"
    profile = db.query(ProProfile).one()
    assert profile.company_name == "Martin Construction"
    assert profile.onboarding_complete is False


def test_pro_signup_requires_company_name(client):
    resp = _signup(client, email="p2@example.com", role="professional")
    assert resp.status_code == 400


def test_duplicate_email_is_rejected(client):
    assert _signup(client).status_code == 200
    assert _signup(client).status_code == 400


def test_signin_and_bad_password(client):
    _signup(client)
    ok = client.post("/auth/signin", json={"email": "marie@example.com", "password": "motdepasse123"})
    assert ok.status_code == 200
    bad = client.post("/auth/signin", json={"email": "marie@example.com", "password": "wrong-password"})
    assert bad.status_code == 401


def test_refresh_rotates_and_signout_revokes(client):
    tokens = _signup(client).json()
    first = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert first.status_code == 200
    # the consumed token cannot be replayed
    assert client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401

    new_tokens = first.json()
    out = client.post("/auth/signout", headers={"Authorization": f"Bearer {new_tokens['access_token']}"})
    assert out.status_code == 200
    assert out.json()["redirect"] == "/connexion"
    assert client.post("/auth/refresh", json={"refresh_token": new_tokens["refresh_token"]}).status_code == 401


def test_refresh_token_is_not_an_access_token(client):
    tokens = _signup(client).json()
    resp = client.get("/auth/session", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert resp.status_code == 401


class FakeGoogle:
    def authorization_url(self, state):
        return f"https://accounts.google.test/auth?state={state}"

    def exchange_code(self, code):
        assert code == "good-code"
        return {"email": "oauth@example.com", "subject": "google-123", "name": "Olivia Auth"}


def test_oauth_round_trip_creates_user_with_role_hint(client, db):
    app.dependency_overrides[oauth_client] = lambda: FakeGoogle()
    start = client.get("/auth/oauth/google", params={"role": "client"})
    assert start.status_code == 200
    state = parse_qs(urlparse(start.json()["authorization_url"]).query)["state"][0]

    cb = client.get("/auth/oauth/google/callback", params={"code": "good-code", "state": state})
    assert cb.status_code == 200, cb.text
    assert cb.json()["role"] == "client"
    user = db.query(User).filter(User.email == "oauth@example.com").one()
    assert user.oauth_subject == "google-123"
    assert user.password_hash is None

    # second sign-in finds the same account
    again = client.get("/auth/oauth/google/callback", params={"code": "good-code", "state": state})
    assert again.status_code == 200
    assert db.query(User).filter(User.email == "oauth@example.com").count() == 1


def test_oauth_callback_rejects_foreign_state(client, db):
    app.dependency_overrides[oauth_client] = lambda: FakeGoogle()
    user = make_client(db)
    resp = client.get(
        "/auth/oauth/google/callback",
        params={"code": "good-code", "state": auth_headers(user)["Authorization"].split()[1]},
    )
    assert resp.status_code == 400


def test_unsupported_provider(client):
    assert client.get("/auth/oauth/myspace").status_code == 404
