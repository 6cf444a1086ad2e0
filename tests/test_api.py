import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, build_engine, get_db
from main import app
from models import User, UserRole
from notifications import LogNotifier, get_notifier

PASSWORD = "Sup3r$ecret"


@pytest.fixture()
def client():
    engine = build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    notifier = LogNotifier()

    def override_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    test_client = TestClient(app)
    test_client.session_factory = SessionLocal
    test_client.notifier = notifier
    yield test_client
    app.dependency_overrides.clear()


def register(client, username: str) -> dict:
    response = client.post(
        "/api/users/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
        },
    )
    assert response.status_code == 201
    return response.json()["user"]


def auth_headers(client, identifier: str, password: str = PASSWORD) -> dict:
    response = client.post(
        "/api/users/login", json={"identifier": identifier, "password": password}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def make_admin(client, username: str = "root") -> dict:
    user = register(client, username)
    with client.session_factory() as session:
        session.get(User, user["id"]).role = UserRole.admin
        session.commit()
    return auth_headers(client, username)


def test_protected_routes_require_a_token(client) -> None:
    assert client.get("/api/transactions").status_code == 401
    response = client.get(
        "/api/transactions", headers={"Authorization": "Bearer garbage"}
    )
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_login_with_bad_password_is_unauthorized(client) -> None:
    register(client, "alice")

    response = client.post(
        "/api/users/login", json={"identifier": "alice", "password": "Wr0ng$pass"}
    )

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "message": "Invalid email or password",
    }


def test_duplicate_registration_conflicts(client) -> None:
    register(client, "alice")

    response = client.post(
        "/api/users/register",
        json={"username": "alice", "email": "new@example.com", "password": PASSWORD},
    )

    assert response.status_code == 409


def test_weak_password_is_a_bad_request(client) -> None:
    response = client.post(
        "/api/users/register",
        json={"username": "alice", "email": "alice@example.com", "password": "weak"},
    )

    assert response.status_code == 400
    assert "at least 8 characters" in response.json()["message"]


def test_transaction_crud_round_trip(client) -> None:
    register(client, "alice")
    headers = auth_headers(client, "alice")

    created = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "amount": "50.00",
            "type": "expense",
            "category": "Food & Dining",
            "description": "Dinner",
            "date": "2024-03-01",
        },
    )
    assert created.status_code == 201
    body = created.json()["data"]
    assert body["amount"] == 50.0
    assert body["category"]["name"] == "Food & Dining"
    txn_id = body["id"]

    fetched = client.get(f"/api/transactions/{txn_id}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["description"] == "Dinner"

    patched = client.patch(
        f"/api/transactions/{txn_id}", headers=headers, json={"amount": "42.50"}
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["amount"] == 42.5
    assert patched.json()["data"]["description"] == "Dinner"

    listing = client.get("/api/transactions", headers=headers).json()
    assert listing["pagination"] == {
        "totalItems": 1,
        "totalPages": 1,
        "currentPage": 1,
        "pageSize": 10,
    }

    assert client.delete(f"/api/transactions/{txn_id}", headers=headers).status_code == 200
    assert client.get(f"/api/transactions/{txn_id}", headers=headers).status_code == 404
    assert client.delete(f"/api/transactions/{txn_id}", headers=headers).status_code == 404


def test_non_positive_amount_is_rejected(client) -> None:
    register(client, "alice")
    headers = auth_headers(client, "alice")

    response = client.post(
        "/api/transactions",
        headers=headers,
        json={"amount": 0, "type": "expense", "category": "Food", "date": "2024-03-01"},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_other_users_transactions_are_not_found(client) -> None:
    register(client, "alice")
    register(client, "bob")
    alice = auth_headers(client, "alice")
    bob = auth_headers(client, "bob")
    txn_id = client.post(
        "/api/transactions",
        headers=alice,
        json={"amount": 10, "type": "expense", "category": "Food", "date": "2024-03-01"},
    ).json()["data"]["id"]

    assert client.get(f"/api/transactions/{txn_id}", headers=bob).status_code == 404
    assert (
        client.patch(
            f"/api/transactions/{txn_id}", headers=bob, json={"description": "x"}
        ).status_code
        == 404
    )


def test_summary_endpoint_returns_totals(client) -> None:
    register(client, "alice")
    headers = auth_headers(client, "alice")
    for payload in (
        {"amount": 1000, "type": "income", "category": "Salary", "date": "2024-03-01"},
        {"amount": 400, "type": "expense", "category": "Rent", "date": "2024-03-02"},
    ):
        client.post("/api/transactions", headers=headers, json=payload)

    response = client.get(
        "/api/transactions/summary",
        headers=headers,
        params={"startDate": "2024-03-01", "endDate": "2024-03-31"},
    )

    data = response.json()["data"]
    assert data["totalIncome"] == 1000
    assert data["totalExpenses"] == 400
    assert data["balance"] == 600
    assert data["categories"] == [{"name": "Rent", "total": 400}]

    bad = client.get(
        "/api/transactions/summary",
        headers=headers,
        params={"startDate": "2024-04-01", "endDate": "2024-03-01"},
    )
    assert bad.status_code == 400


def test_admin_routes_are_forbidden_for_regular_users(client) -> None:
    register(client, "alice")
    headers = auth_headers(client, "alice")

    assert client.get("/api/transactions/admin/all", headers=headers).status_code == 403
    assert (
        client.get(
            "/api/admin/overview-report",
            headers=headers,
            params={"startDate": "2024-01-01", "endDate": "2024-12-31"},
        ).status_code
        == 403
    )
    assert client.get("/api/users", headers=headers).status_code == 403


def test_overview_requires_dates(client) -> None:
    admin = make_admin(client)

    missing = client.get("/api/admin/overview-report", headers=admin)
    assert missing.status_code == 400

    response = client.get(
        "/api/admin/overview-report",
        headers=admin,
        params={"startDate": "2024-01-01", "endDate": "2024-12-31"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["topCategoriesSystemWide"] == []
    assert data["financialPerformance"]["platformNetBalance"] == 0


def test_admin_lists_transactions_of_all_users(client) -> None:
    register(client, "alice")
    alice = auth_headers(client, "alice")
    client.post(
        "/api/transactions",
        headers=alice,
        json={"amount": 5, "type": "expense", "category": "Food", "date": "2024-03-01"},
    )
    admin = make_admin(client)

    response = client.get(
        "/api/transactions/admin/all", headers=admin, params={"username": "ali"}
    )

    body = response.json()
    assert response.status_code == 200
    assert [t["user"]["username"] for t in body["data"]] == ["alice"]


def test_deactivated_user_token_is_rejected(client) -> None:
    alice = register(client, "alice")
    headers = auth_headers(client, "alice")
    admin = make_admin(client)

    response = client.patch(
        "/api/users/status",
        headers=admin,
        json={"userId": alice["id"], "status": "DEACTIVATED"},
    )
    assert response.status_code == 200

    assert client.get("/api/users/profile", headers=headers).status_code == 403


def test_users_can_only_view_their_own_profile(client) -> None:
    alice = register(client, "alice")
    bob = register(client, "bob")
    headers = auth_headers(client, "alice")

    assert client.get(f"/api/users/{alice['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/users/{bob['id']}", headers=headers).status_code == 403


def test_forgot_and_reset_password(client) -> None:
    register(client, "alice")

    response = client.post(
        "/api/users/forgot-password", json={"email": "alice@example.com"}
    )
    assert response.status_code == 200
    [(_, _, body)] = client.notifier.sent
    token = body.split("/reset-password/")[1].split()[0]

    reset = client.post(
        "/api/users/reset-password", json={"token": token, "newPassword": "Br4nd$new"}
    )
    assert reset.status_code == 200
    auth_headers(client, "alice", "Br4nd$new")


def test_login_info_reports_attempts(client) -> None:
    register(client, "alice")
    client.post(
        "/api/users/login", json={"identifier": "alice", "password": "Wr0ng$pass"}
    )
    headers = auth_headers(client, "alice")

    info = client.get("/api/users/profile/login-info", headers=headers).json()

    assert info["login_info"]["success_count"] == 1
    assert info["login_info"]["failed_count"] == 1
    assert info["login_info"]["last_failed_login"]["status"] == "FAILED"
