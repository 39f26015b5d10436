import uuid

from app.medstock.db.models import User
from tests.medstock_helpers import PASSWORD, auth_headers, create_organization, create_user, login


def test_login_with_username_or_email(client, db_session):
    organization, pharmacy, _ = create_organization(db_session, suffix="auth")
    create_user(db_session, organization, suffix="jane", department=pharmacy)

    by_username = client.post("/medstock/auth/login", json={"username_or_email": "user-jane", "password": PASSWORD})
    by_email = client.post("/medstock/auth/login", json={"email": "user-jane@example.com", "password": PASSWORD})

    assert by_username.status_code == 200
    assert by_username.json()["access_token"]
    assert by_username.json()["token_type"] == "bearer"
    assert by_email.status_code == 200


def test_login_invalid_password(client, db_session):
    organization, _, _ = create_organization(db_session, suffix="auth")
    create_user(db_session, organization, suffix="jane")

    response = client.post("/medstock/auth/login", json={"username_or_email": "user-jane", "password": "wrong-pass"})

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_login_blocked_suspended(client, db_session):
    organization, _, _ = create_organization(db_session, suffix="auth")
    user = create_user(db_session, organization, suffix="jane")
    user.status = "suspended"
    db_session.commit()

    response = client.post("/medstock/auth/login", json={"username_or_email": "user-jane", "password": PASSWORD})

    assert response.status_code == 403
    assert response.json()["code"] == "USER_INACTIVE"


def test_login_requires_an_identifier(client):
    response = client.post("/medstock/auth/login", json={"password": PASSWORD})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_token_endpoint_accepts_form_data(client, db_session):
    organization, _, _ = create_organization(db_session, suffix="auth")
    create_user(db_session, organization, suffix="jane")

    response = client.post(
        "/medstock/auth/token",
        content=f"username=user-jane&password={PASSWORD.replace('!', '%21')}",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


def test_me_unauthorized(client):
    response = client.get("/medstock/auth/me")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"
    assert response.json()["trace_id"]


def test_me_rejects_garbage_token(client):
    response = client.get("/medstock/auth/me", headers=auth_headers("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_me_authorized(client, db_session):
    organization, pharmacy, _ = create_organization(db_session, suffix="auth")
    user = create_user(db_session, organization, suffix="jane", role="ADMIN", department=pharmacy)

    response = client.get("/medstock/auth/me", headers=auth_headers(login(client, "user-jane")))

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == str(user.id)
    assert payload["organization_id"] == str(organization.id)
    assert payload["department_id"] == str(pharmacy.id)
    assert payload["role"] == "ADMIN"
    assert payload["is_active"] is True


def test_deactivated_user_token_stops_working(client, db_session):
    organization, _, _ = create_organization(db_session, suffix="auth")
    create_user(db_session, organization, suffix="jane")
    token = login(client, "user-jane")

    user = db_session.query(User).filter(User.username == "user-jane").one()
    user.is_active = False
    db_session.commit()

    response = client.get("/medstock/transfers", headers=auth_headers(token))
    assert response.status_code == 403
    assert response.json()["code"] == "USER_INACTIVE"


def test_failed_login_is_audited(client, db_session):
    organization, _, _ = create_organization(db_session, suffix="auth")
    create_user(db_session, organization, suffix="owner", role="OWNER")
    client.post("/medstock/auth/login", json={"username_or_email": "user-owner", "password": "nope"})

    response = client.get(
        "/medstock/audit-events",
        params={"action": "auth.login"},
        headers=auth_headers(login(client, "user-owner")),
    )

    actions = [row["action"] for row in response.json()["rows"]]
    assert "auth.login.failed" in actions
    assert "auth.login" in actions
    assert str(uuid.UUID(response.json()["rows"][0]["entity_id"]))
