"""Registration, login, logout and session resolution"""


def test_register_returns_user_without_password(client):
    response = client.post("/api/auth/register", json={
        "username": "ravi",
        "password": "secret123",
        "name": "Ravi Kumar",
        "userType": "farmer",
        "location": "Warangal",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["user"]["username"] == "ravi"
    assert body["user"]["userType"] == "farmer"
    assert "password" not in body["user"]
    assert "passwordHash" not in body["user"]
    assert "agribuddy_session" in response.cookies


def test_register_accepts_buyer_as_consumer(client):
    response = client.post("/api/register", json={
        "username": "sita",
        "password": "secret123",
        "name": "Sita",
        "userType": "buyer",
    })
    assert response.status_code == 201
    assert response.json()["user"]["userType"] == "consumer"


def test_duplicate_username_is_rejected_case_insensitively(client, register):
    register("ravi")
    response = client.post("/api/auth/register", json={
        "username": "RAVI",
        "password": "secret123",
        "name": "Other Ravi",
        "userType": "consumer",
    })
    assert response.status_code == 409
    assert response.json()["error"] == "Username already exists"


def test_register_validation_errors_use_envelope(client):
    response = client.post("/api/auth/register", json={
        "username": "x",
        "password": "123",
        "name": "X",
        "userType": "farmer",
    })
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request"
    assert "username" in body["message"]


def test_login_and_current_user_via_cookie(client, register):
    register("ravi", password="secret123")
    client.cookies.clear()

    assert client.get("/api/user").status_code == 401

    response = client.post("/api/auth/login", json={"username": "ravi", "password": "secret123"})
    assert response.status_code == 200
    me = client.get("/api/user")
    assert me.status_code == 200
    assert me.json()["user"]["username"] == "ravi"


def test_login_with_wrong_password(client, register):
    register("ravi", password="secret123")
    response = client.post("/api/login", json={"username": "ravi", "password": "wrong-pass"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid username or password"


def test_login_unknown_user(client):
    response = client.post("/api/auth/login", json={"username": "ghost", "password": "whatever"})
    assert response.status_code == 401


def test_logout_invalidates_token(client, register):
    headers = register("ravi")
    assert client.get("/api/user", headers=headers).status_code == 200

    response = client.post("/api/auth/logout", headers=headers)
    assert response.status_code == 200
    client.cookies.clear()
    assert client.get("/api/user", headers=headers).status_code == 401


def test_expired_session_is_dropped(app, client, register):
    headers = register("ravi")
    token = headers["Authorization"].split(" ", 1)[1]
    app.state.auth.sessions[token].expires_at = 0
    client.cookies.clear()

    assert client.get("/api/user", headers=headers).status_code == 401
    assert token not in app.state.auth.sessions


def test_temporary_password_shape():
    from core.auth import generate_temporary_password

    password = generate_temporary_password()
    assert password.startswith("temp_")
    assert len(password) == 13
    assert password[5:].isalnum() and password[5:].lower() == password[5:]
