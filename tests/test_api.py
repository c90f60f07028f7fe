def _register_and_login(client, name="Ann", email="ann@example.com", password="password123") -> dict:
    res = client.post(
        "/api/register", json={"name": name, "email": email, "password": password}
    )
    assert res.status_code == 201
    res = client.post("/api/login", json={"email": email, "password": password})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}


def _category_id(client, headers, name: str) -> int:
    categories = client.get("/api/categories", headers=headers).json()["categories"]
    return next(c["id"] for c in categories if c["name"] == name)


def test_health(client) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_register_returns_user_without_password(client) -> None:
    res = client.post(
        "/api/register",
        json={"name": "Ann", "email": "Ann@Example.com", "password": "password123"},
    )

    assert res.status_code == 201
    user = res.json()["user"]
    assert user["email"] == "ann@example.com"
    assert "password_hash" not in user


def test_duplicate_register_is_conflict(client) -> None:
    body = {"name": "Ann", "email": "ann@example.com", "password": "password123"}
    client.post("/api/register", json=body)

    res = client.post("/api/register", json=body)

    assert res.status_code == 409
    assert res.json()["error"] == "already_exists"


def test_protected_routes_require_bearer_token(client) -> None:
    missing = client.get("/api/expenses")
    assert missing.status_code == 401
    assert missing.json()["error"] == "unauthorized"

    wrong_scheme = client.get("/api/expenses", headers={"Authorization": "Token abc"})
    assert wrong_scheme.status_code == 401
    assert wrong_scheme.json()["error"] == "invalid_token"

    garbage = client.get("/api/expenses", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.json() == {
        "error": "invalid_token",
        "message": "Invalid or malformed authentication token",
        "status_code": 401,
    }


def test_bad_login_is_unauthorized(client) -> None:
    _register_and_login(client)
    res = client.post("/api/login", json={"email": "ann@example.com", "password": "nope-nope"})
    assert res.status_code == 401
    assert res.json()["error"] == "invalid_credentials"


def test_malformed_body_is_validation_error(client) -> None:
    res = client.post("/api/register", json={"name": "Ann"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "validation_failed"
    assert body["status_code"] == 400


def test_logout_revokes_token(client) -> None:
    headers = _register_and_login(client)

    assert client.post("/api/logout", headers=headers).status_code == 200

    res = client.get("/api/profile", headers=headers)
    assert res.status_code == 401
    assert res.json()["error"] == "session_expired"


def test_coffee_expense_flow(client) -> None:
    headers = _register_and_login(client)
    food = _category_id(client, headers, "Food")

    created = client.post(
        "/api/expenses",
        headers=headers,
        json={
            "title": "Coffee",
            "amount": 4.50,
            "date": "01-06-2024",
            "time": "09:30 AM",
            "categories": [food],
        },
    )
    assert created.status_code == 201
    expense = created.json()["expense"]
    assert expense["amount"] == 4.5
    assert expense["expense_date"] == "01-06-2024"
    assert expense["expense_time"] == "09:30 AM"
    assert expense["categories"] == [{"id": food, "name": "Food", "is_default": True}]

    listed = client.get("/api/expenses", headers=headers).json()
    assert listed["count"] == 1
    assert listed["expenses"][0]["title"] == "Coffee"
    assert listed["expenses"][0]["categories"][0]["name"] == "Food"

    filtered = client.get(
        "/api/expenses",
        headers=headers,
        params={"start_date": "02-06-2024", "end_date": "30-06-2024"},
    ).json()
    assert filtered["count"] == 0


def test_expense_crud_over_http(client) -> None:
    headers = _register_and_login(client)
    food = _category_id(client, headers, "Food")
    travel = _category_id(client, headers, "Travel")
    body = {
        "title": "Coffee",
        "amount": "4.50",
        "expense_date": "01-06-2024",
        "expense_time": "09:30 AM",
        "categories": [food],
    }
    expense_id = client.post("/api/expenses", headers=headers, json=body).json()["expense"]["id"]

    body.update(title="Train", amount="23.90", categories=[travel, food])
    updated = client.put(f"/api/expenses/{expense_id}", headers=headers, json=body)
    assert updated.status_code == 200
    assert [c["name"] for c in updated.json()["expense"]["categories"]] == ["Food", "Travel"]

    fetched = client.get(f"/api/expenses/{expense_id}", headers=headers).json()["expense"]
    assert fetched["title"] == "Train"
    assert fetched["amount"] == 23.9

    assert client.delete(f"/api/expenses/{expense_id}", headers=headers).status_code == 200
    missing = client.get(f"/api/expenses/{expense_id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_invalid_expense_is_rejected(client) -> None:
    headers = _register_and_login(client)
    food = _category_id(client, headers, "Food")

    res = client.post(
        "/api/expenses",
        headers=headers,
        json={
            "title": "Coffee",
            "amount": 4.5,
            "date": "2024-06-01",
            "time": "09:30 AM",
            "categories": [food],
        },
    )

    assert res.status_code == 400
    assert res.json()["error"] == "validation_failed"


def test_expenses_of_other_users_are_hidden(client) -> None:
    ann = _register_and_login(client)
    bob = _register_and_login(client, name="Bob", email="bob@example.com")
    food = _category_id(client, ann, "Food")
    expense_id = client.post(
        "/api/expenses",
        headers=ann,
        json={
            "title": "Coffee",
            "amount": 4.5,
            "date": "01-06-2024",
            "time": "09:30 AM",
            "categories": [food],
        },
    ).json()["expense"]["id"]

    assert client.get(f"/api/expenses/{expense_id}", headers=bob).status_code == 404
    assert client.delete(f"/api/expenses/{expense_id}", headers=bob).status_code == 404
    assert client.get("/api/expenses", headers=bob).json()["count"] == 0


def test_invalid_filters_are_rejected(client) -> None:
    headers = _register_and_login(client)

    for params in (
        {"start_date": "05-06-2024", "end_date": "01-06-2024"},
        {"min_amount": "10", "max_amount": "5"},
        {"category_id": "food"},
        {"start_date": "June 1st"},
    ):
        res = client.get("/api/expenses", headers=headers, params=params)
        assert res.status_code == 400, params


def test_category_routes(client) -> None:
    headers = _register_and_login(client)

    created = client.post("/api/categories", headers=headers, json={"name": "Hobbies"})
    assert created.status_code == 201
    category_id = created.json()["category"]["id"]

    dup = client.post("/api/categories", headers=headers, json={"name": "hobbies"})
    assert dup.status_code == 409

    forced = client.post(
        "/api/categories", headers=headers, json={"name": "Mine", "is_default": True}
    )
    assert forced.status_code == 403

    renamed = client.put(
        f"/api/categories/{category_id}", headers=headers, json={"name": "Crafts"}
    )
    assert renamed.json()["category"]["name"] == "Crafts"

    food = _category_id(client, headers, "Food")
    assert client.delete(f"/api/categories/{food}", headers=headers).status_code == 403
    assert client.delete(f"/api/categories/{category_id}", headers=headers).status_code == 200


def test_profile_routes(client) -> None:
    headers = _register_and_login(client)

    profile = client.get("/api/profile", headers=headers).json()["profile"]
    assert profile["name"] == "Ann"

    res = client.put("/api/profile", headers=headers, json={"name": "Ann Lee"})
    assert res.json()["profile"]["name"] == "Ann Lee"

    res = client.put(
        "/api/profile/password",
        headers=headers,
        json={"current_password": "password123", "new_password": "brand-new-pass"},
    )
    assert res.status_code == 200

    login = client.post(
        "/api/login", json={"email": "ann@example.com", "password": "brand-new-pass"}
    )
    assert login.status_code == 200

    assert client.delete("/api/profile", headers=headers).status_code == 200
    assert client.get("/api/profile", headers=headers).status_code == 401


def test_summary_pagination_payload(client) -> None:
    headers = _register_and_login(client)
    rent = _category_id(client, headers, "Rent")
    for day in ("01-05-2024", "01-06-2024"):
        client.post(
            "/api/expenses",
            headers=headers,
            json={
                "title": "Rent",
                "amount": 500,
                "date": day,
                "time": "08:00 AM",
                "categories": [rent],
            },
        )

    res = client.get("/api/summary/monthly", headers=headers, params={"page": 2, "limit": 1})

    assert res.status_code == 200
    body = res.json()
    assert body["page"] == 2
    assert body["limit"] == 1
    assert body["total"] == 2
    assert body["total_pages"] == 2
    assert [item["month"] for item in body["data"]] == ["May 2024"]

    fallback = client.get(
        "/api/summary/daily", headers=headers, params={"page": "abc", "limit": "xyz"}
    ).json()
    assert (fallback["page"], fallback["limit"], fallback["total"]) == (1, 10, 2)

    weekly = client.get(
        "/api/summary/weekly", headers=headers, params={"month": "2024-06"}
    ).json()
    assert weekly["total"] == 1
    assert weekly["data"][0]["start_date"] == "01-06-2024"

    bad_month = client.get(
        "/api/summary/weekly", headers=headers, params={"month": "June"}
    )
    assert bad_month.status_code == 400


def test_dashboard_shape(client) -> None:
    headers = _register_and_login(client)

    body = client.get("/api/dashboard", headers=headers).json()

    assert body["summary"]["total_expenses"] == 0
    assert body["summary"]["total_amount"] == 0.0
    assert len(body["weekly_trend"]) == 4
    assert len(body["daily_trend"]) == 7
    assert body["recent_expenses"] == []


def test_owned_category_is_flagged_on_expense(client) -> None:
    headers = _register_and_login(client)
    food = _category_id(client, headers, "Food")
    hobbies = client.post(
        "/api/categories", headers=headers, json={"name": "Hobbies"}
    ).json()["category"]["id"]

    expense = client.post(
        "/api/expenses",
        headers=headers,
        json={
            "title": "Paint",
            "amount": 12,
            "date": "01-06-2024",
            "time": "10:00 AM",
            "categories": [hobbies, food],
        },
    ).json()["expense"]

    assert expense["categories"] == [
        {"id": food, "name": "Food", "is_default": True},
        {"id": hobbies, "name": "Hobbies", "is_default": False},
    ]


def test_oversized_amounts_are_validation_errors(client) -> None:
    headers = _register_and_login(client)
    food = _category_id(client, headers, "Food")

    created = client.post(
        "/api/expenses",
        headers=headers,
        json={
            "title": "Yacht",
            "amount": "1e20",
            "date": "01-06-2024",
            "time": "10:00 AM",
            "categories": [food],
        },
    )
    assert created.status_code == 400
    assert created.json()["error"] == "validation_failed"

    for params in ({"min_amount": "1e30"}, {"max_amount": "100000000"}):
        res = client.get("/api/expenses", headers=headers, params=params)
        assert res.status_code == 400, params
        assert res.json()["error"] == "validation_failed"
