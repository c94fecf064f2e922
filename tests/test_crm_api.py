from sqlalchemy import select

from blackbox_crm.core.config import settings
from blackbox_crm.models.invoice import Invoice
from blackbox_crm.models.sales_pipeline import SalesPipeline
from blackbox_crm.models.user import User
from blackbox_crm.repositories.invoices import InvoiceRepository


def _register(client, *, email: str, full_name: str = "Owner", username: str | None = None):
    payload = {
        "email": email,
        "full_name": full_name,
        "password": "password123",
        "company": f"{full_name} Traders",
    }
    if username:
        payload["username"] = username
    return client.post("/auth/register", json=payload)


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, email: str = "owner@example.com") -> str:
    register_res = _register(client, email=email)
    assert register_res.status_code == 200, register_res.text
    return register_res.json()["access_token"]


def _create_contact(client, token: str, **overrides) -> str:
    payload = {"name": "Ali Raza", "company": "Raza Traders", "email": "ali@example.com"}
    payload.update(overrides)
    res = client.post("/contacts", json=payload, headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    return res.json()["id"]


def _create_deal(client, token: str, **overrides) -> str:
    payload = {"title": "Website redesign", "status": "qualified", "amount": 5000}
    payload.update(overrides)
    res = client.post("/pipelines", json=payload, headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    return res.json()["id"]


def test_health_endpoints(test_context):
    client, _ = test_context

    assert client.get("/health").json() == {"ok": True}
    assert client.get("/ready").json() == {"ok": True}
    root = client.get("/").json()
    assert root["app"] == settings.app_name


def test_auth_register_and_login_email_or_username(test_context):
    client, session_local = test_context

    register_res = _register(client, email="Sara@Example.com", full_name="Sara Khan", username="Sara Khan")
    assert register_res.status_code == 200, register_res.text
    assert register_res.json()["token_type"] == "bearer"
    assert register_res.json()["access_token"]

    db = session_local()
    try:
        user = db.execute(select(User).where(User.email == "sara@example.com")).scalar_one()
    finally:
        db.close()
    assert user.username == "sara_khan"
    assert user.company == "Sara Khan Traders"

    by_email = client.post(
        "/auth/login",
        json={"identifier": "sara@example.com", "password": "password123"},
    )
    assert by_email.status_code == 200, by_email.text

    by_username = client.post(
        "/auth/login",
        json={"identifier": "SARA_KHAN", "password": "password123"},
    )
    assert by_username.status_code == 200, by_username.text

    swagger_token = client.post(
        "/auth/token",
        data={"username": "sara_khan", "password": "password123"},
    )
    assert swagger_token.status_code == 200, swagger_token.text

    duplicate = _register(client, email="sara@example.com")
    assert duplicate.status_code == 400
    assert duplicate.json()["error"]["message"] == "Email already registered"


def test_auth_profile_read_and_update(test_context):
    client, _ = test_context
    token = _owner_token(client)

    me = client.get("/auth/me", headers=_auth_headers(token))
    assert me.status_code == 200, me.text
    assert me.json()["email"] == "owner@example.com"

    updated = client.patch(
        "/auth/me",
        json={"full_name": "Owner Updated", "phone": "+92 300 1111111", "address": "Lahore"},
        headers=_auth_headers(token),
    )
    assert updated.status_code == 200, updated.text
    body = updated.json()
    assert body["full_name"] == "Owner Updated"
    assert body["phone"] == "+92 300 1111111"
    assert body["address"] == "Lahore"

    empty = client.patch("/auth/me", json={}, headers=_auth_headers(token))
    assert empty.status_code == 422


def test_auth_login_rate_limited_after_repeated_failures(test_context):
    client, _ = test_context
    _owner_token(client, email="ratelimit-owner@example.com")

    for _ in range(settings.auth_rate_limit_max_attempts):
        failed_login = client.post(
            "/auth/login",
            json={"identifier": "ratelimit-owner@example.com", "password": "wrongpass"},
        )
        assert failed_login.status_code == 401, failed_login.text

    blocked_login = client.post(
        "/auth/login",
        json={"identifier": "ratelimit-owner@example.com", "password": "password123"},
    )
    assert blocked_login.status_code == 429, blocked_login.text
    assert int(blocked_login.headers["Retry-After"]) > 0
    assert blocked_login.json()["error"]["code"] == "rate_limited"


def test_protected_routes_require_token(test_context):
    client, _ = test_context

    res = client.get("/contacts")
    assert res.status_code == 401
    error = res.json()["error"]
    assert error["code"] == "unauthorized"
    assert error["path"] == "/contacts"
    assert res.headers["X-Request-ID"] == error["request_id"]

    bad_token = client.get("/contacts", headers=_auth_headers("not-a-token"))
    assert bad_token.status_code == 401


def test_contacts_crud_search_and_pagination(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    first_id = _create_contact(client, token, name="Ali Raza", company="Raza Traders", ranking=4)
    second_id = _create_contact(client, token, name="Bina Shah", company="Shah Textiles", email="bina@shah.pk")
    _create_contact(client, token, name="Omar Farooq", company=None, email=None, phone="+92 321 5550000")

    listed = client.get("/contacts", headers=headers)
    assert listed.status_code == 200, listed.text
    body = listed.json()
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["limit"] == 25
    assert [item["name"] for item in body["items"]] == ["Omar Farooq", "Bina Shah", "Ali Raza"]

    by_company = client.get("/contacts", params={"q": "TEXTILES"}, headers=headers).json()
    assert [item["id"] for item in by_company["items"]] == [second_id]
    assert by_company["q"] == "textiles"

    by_phone = client.get("/contacts", params={"q": "5550000"}, headers=headers).json()
    assert by_phone["pagination"]["total"] == 1

    paged = client.get("/contacts", params={"limit": 2, "offset": 0}, headers=headers).json()
    assert paged["pagination"]["count"] == 2
    assert paged["pagination"]["has_next"] is True

    fetched = client.get(f"/contacts/{first_id}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["ranking"] == 4

    updated = client.patch(
        f"/contacts/{first_id}",
        json={"ranking": 5, "address": "Clifton, Karachi"},
        headers=headers,
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["ranking"] == 5
    assert updated.json()["address"] == "Clifton, Karachi"

    deleted = client.delete(f"/contacts/{first_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(f"/contacts/{first_id}", headers=headers).status_code == 404


def test_contact_validation_uses_error_envelope(test_context):
    client, _ = test_context
    token = _owner_token(client)

    res = client.post(
        "/contacts",
        json={"name": "Ali", "ranking": 6},
        headers=_auth_headers(token),
    )
    assert res.status_code == 422
    error = res.json()["error"]
    assert error["code"] == "validation_error"
    assert any(detail["field"] == "ranking" for detail in error["details"])


def test_deleting_contact_keeps_deals_and_invoices(test_context):
    client, session_local = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    contact_id = _create_contact(client, token)
    deal_id = _create_deal(client, token, contact_id=contact_id)
    invoice_res = client.post("/invoices", json={"sales_pipeline_id": deal_id}, headers=headers)
    assert invoice_res.status_code == 200, invoice_res.text
    invoice_id = invoice_res.json()["id"]

    assert client.delete(f"/contacts/{contact_id}", headers=headers).status_code == 204

    deal = client.get(f"/pipelines/{deal_id}", headers=headers).json()
    assert deal["contact_id"] is None
    assert deal["contact"] is None

    db = session_local()
    try:
        invoice = db.execute(select(Invoice).where(Invoice.id == invoice_id)).scalar_one()
        assert invoice.contact_id is None
        assert invoice.sales_pipeline_id == deal_id
    finally:
        db.close()


def test_pipeline_defaults_and_contact_summary(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    contact_id = _create_contact(client, token)

    created = client.post("/pipelines", json={"contact_id": contact_id, "amount": 1200}, headers=headers)
    assert created.status_code == 200, created.text
    title = created.json()["title"]
    assert title.startswith("SP-")
    assert len(title) == 12

    deal = client.get(f"/pipelines/{created.json()['id']}", headers=headers).json()
    assert deal["status"] == "contacted"
    assert deal["amount"] == 1200.0
    assert deal["contact"]["name"] == "Ali Raza"
    assert deal["invoice_status"] is None

    missing_contact = client.post("/pipelines", json={"contact_id": "missing"}, headers=headers)
    assert missing_contact.status_code == 404

    bad_status = client.post("/pipelines", json={"status": "won"}, headers=headers)
    assert bad_status.status_code == 422


def test_closed_deal_amount_is_immutable(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    deal_id = _create_deal(client, token, status="in progress", amount=3000)

    closing = client.patch(
        f"/pipelines/{deal_id}",
        json={"status": "closed_won", "amount": 3500},
        headers=headers,
    )
    assert closing.status_code == 200, closing.text
    assert closing.json()["status"] == "closed_won"
    assert closing.json()["amount"] == 3500.0

    change_amount = client.patch(f"/pipelines/{deal_id}", json={"amount": 4000}, headers=headers)
    assert change_amount.status_code == 409
    assert change_amount.json()["error"]["code"] == "conflict"

    same_amount = client.patch(f"/pipelines/{deal_id}", json={"amount": 3500, "notes": "Signed"}, headers=headers)
    assert same_amount.status_code == 200, same_amount.text
    assert same_amount.json()["notes"] == "Signed"


def test_pipeline_list_filter_and_board(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    _create_deal(client, token, title="A", status="contacted", amount=100)
    _create_deal(client, token, title="B", status="closed_won", amount=2500)
    _create_deal(client, token, title="C", status="closed_won", amount=1500)

    won = client.get("/pipelines", params={"status": "closed won"}, headers=headers).json()
    assert won["status"] == "closed_won"
    assert won["pagination"]["total"] == 2
    assert {item["title"] for item in won["items"]} == {"B", "C"}

    invalid = client.get("/pipelines", params={"status": "archived"}, headers=headers)
    assert invalid.status_code == 422

    board = client.get("/pipelines/board", headers=headers)
    assert board.status_code == 200, board.text
    columns = board.json()["columns"]
    assert [column["status"] for column in columns] == [
        "contacted",
        "qualified",
        "in_progress",
        "closed_won",
        "closed_lost",
    ]
    closed_won = columns[3]
    assert closed_won["count"] == 2
    assert closed_won["total_amount"] == 4000.0
    assert columns[1]["count"] == 0


def test_deleting_deal_keeps_its_invoices(test_context):
    client, session_local = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    deal_id = _create_deal(client, token)
    invoice_id = client.post("/invoices", json={"sales_pipeline_id": deal_id}, headers=headers).json()["id"]

    assert client.delete(f"/pipelines/{deal_id}", headers=headers).status_code == 204
    assert client.get(f"/pipelines/{deal_id}", headers=headers).status_code == 404

    invoice = client.get(f"/invoices/{invoice_id}", headers=headers).json()
    assert invoice["sales_pipeline_id"] is None

    db = session_local()
    try:
        assert db.execute(select(SalesPipeline).where(SalesPipeline.id == deal_id)).first() is None
    finally:
        db.close()


def test_invoice_defaults_from_deal(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    contact_id = _create_contact(client, token)
    deal_id = _create_deal(client, token, contact_id=contact_id, amount=7250, description="Logo and branding")

    created = client.post("/invoices", json={"sales_pipeline_id": deal_id}, headers=headers)
    assert created.status_code == 200, created.text
    assert created.json()["serial_number"].startswith("INV-")
    assert len(created.json()["serial_number"]) == 10

    invoice = client.get(f"/invoices/{created.json()['id']}", headers=headers).json()
    assert invoice["amount"] == 7250.0
    assert invoice["description"] == "Logo and branding"
    assert invoice["contact_id"] == contact_id
    assert invoice["contact"]["company"] == "Raza Traders"
    assert invoice["status"] == "unpaid"
    assert invoice["invoice_date"]

    deal = client.get(f"/pipelines/{deal_id}", headers=headers).json()
    assert deal["invoice_status"] == "unpaid"


def test_invoice_validation_and_serial_uniqueness(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    no_amount = client.post("/invoices", json={"description": "Consulting"}, headers=headers)
    assert no_amount.status_code == 400

    due_before = client.post(
        "/invoices",
        json={"amount": 100, "invoice_date": "2026-10-10", "due_date": "2026-10-01"},
        headers=headers,
    )
    assert due_before.status_code == 422

    first = client.post(
        "/invoices",
        json={"serial_number": "INV-000001", "amount": 100, "invoice_date": "2026-10-01"},
        headers=headers,
    )
    assert first.status_code == 200, first.text

    duplicate = client.post(
        "/invoices",
        json={"serial_number": "INV-000001", "amount": 200},
        headers=headers,
    )
    assert duplicate.status_code == 409

    bad_due = client.patch(
        f"/invoices/{first.json()['id']}",
        json={"due_date": "2026-09-01"},
        headers=headers,
    )
    assert bad_due.status_code == 400

    paid = client.patch(
        f"/invoices/{first.json()['id']}",
        json={"status": "PAID", "due_date": "2026-10-31"},
        headers=headers,
    )
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "paid"
    assert paid.json()["due_date"] == "2026-10-31"

    listed = client.get("/invoices", params={"status": "paid"}, headers=headers).json()
    assert [item["serial_number"] for item in listed["items"]] == ["INV-000001"]

    other_user_token = _owner_token(client, email="second@example.com")
    same_serial_other_user = client.post(
        "/invoices",
        json={"serial_number": "INV-000001", "amount": 50},
        headers=_auth_headers(other_user_token),
    )
    assert same_serial_other_user.status_code == 200, same_serial_other_user.text


def test_invoice_serial_race_reports_conflict(test_context, monkeypatch):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    first = client.post("/invoices", json={"serial_number": "INV-777777", "amount": 100}, headers=headers)
    assert first.status_code == 200, first.text

    # Both writers see the serial as free; the unique constraint decides.
    monkeypatch.setattr(InvoiceRepository, "serial_taken", lambda self, serial_number, exclude_id=None: False)

    second = client.post("/invoices", json={"serial_number": "INV-777777", "amount": 200}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "conflict"
    assert second.json()["error"]["message"] == "Serial number already exists"

    other = client.post("/invoices", json={"serial_number": "INV-888888", "amount": 300}, headers=headers)
    assert other.status_code == 200, other.text
    renamed = client.patch(
        f"/invoices/{other.json()['id']}",
        json={"serial_number": "INV-777777"},
        headers=headers,
    )
    assert renamed.status_code == 409

    listed = client.get("/invoices", headers=headers).json()
    assert sorted(item["serial_number"] for item in listed["items"]) == ["INV-777777", "INV-888888"]


def test_oversized_text_fields_are_rejected_before_the_database(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    cases = [
        ("/invoices", {"amount": 100, "description": "x" * 256}, "description"),
        ("/invoices", {"amount": 100, "serial_number": "INV-" + "9" * 40}, "serial_number"),
        ("/contacts", {"name": "n" * 121}, "name"),
        ("/contacts", {"name": "Ali", "phone": "3" * 41}, "phone"),
        ("/pipelines", {"description": "d" * 256}, "description"),
        ("/messages", {"sender_name": "s" * 121, "content": "Hello"}, "sender_name"),
    ]
    for path, payload, field in cases:
        res = client.post(path, json=payload, headers=headers)
        assert res.status_code == 422, (path, res.text)
        assert res.json()["error"]["code"] == "validation_error"
        assert any(detail["field"] == field for detail in res.json()["error"]["details"])

    at_limit = client.post("/invoices", json={"amount": 100, "description": "x" * 255}, headers=headers)
    assert at_limit.status_code == 200, at_limit.text

    profile = client.patch("/auth/me", json={"address": "a" * 256}, headers=headers)
    assert profile.status_code == 422


def test_invoice_pdf_download(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    contact_id = _create_contact(client, token)
    created = client.post(
        "/invoices",
        json={"serial_number": "INV-424242", "amount": 5000, "contact_id": contact_id},
        headers=headers,
    )
    invoice_id = created.json()["id"]

    res = client.get(f"/invoices/{invoice_id}/pdf", headers=headers)
    assert res.status_code == 200, res.text
    assert res.headers["content-type"] == "application/pdf"
    assert 'filename="invoice-INV-424242.pdf"' in res.headers["content-disposition"]
    assert res.content.startswith(b"%PDF")


def test_invoice_pdf_failure_is_reported(test_context, monkeypatch):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    invoice_id = client.post("/invoices", json={"amount": 10}, headers=headers).json()["id"]

    from blackbox_crm.routers import invoices as invoices_router

    monkeypatch.setattr(invoices_router, "build_invoice_pdf", lambda *args, **kwargs: None)

    res = client.get(f"/invoices/{invoice_id}/pdf", headers=headers)
    assert res.status_code == 500
    assert res.json()["error"]["message"] == "Invoice PDF could not be generated"


def test_invoice_share_links(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    invoice_id = client.post("/invoices", json={"amount": 10}, headers=headers).json()["id"]

    share = client.get(f"/invoices/{invoice_id}/share", headers=headers)
    assert share.status_code == 200, share.text
    body = share.json()
    assert body["link"] == f"http://testserver/invoice/{invoice_id}"
    assert body["message"] == f"Invoice Link: http://testserver/invoice/{invoice_id}"
    assert body["whatsapp_url"] == (
        f"https://wa.me/?text=Invoice%20Link:%20http://testserver/invoice/{invoice_id}"
    )

    settings.public_web_base_url = "https://crm.example.com"
    configured = client.get(f"/invoices/{invoice_id}/share", headers=headers).json()
    assert configured["link"] == f"https://crm.example.com/invoice/{invoice_id}"

    assert client.get("/invoices/missing/share", headers=headers).status_code == 404


def test_messages_inbox(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    first = client.post("/messages", json={"sender_name": "Ali", "content": "Hello"}, headers=headers)
    assert first.status_code == 200, first.text
    client.post("/messages", json={"sender_name": "Bina", "content": "Quote please"}, headers=headers)

    listed = client.get("/messages", headers=headers).json()
    assert [item["sender_name"] for item in listed["items"]] == ["Bina", "Ali"]

    blank = client.post("/messages", json={"sender_name": " ", "content": "x"}, headers=headers)
    assert blank.status_code == 422

    assert client.delete(f"/messages/{first.json()['id']}", headers=headers).status_code == 204
    assert client.delete(f"/messages/{first.json()['id']}", headers=headers).status_code == 404
    assert client.get("/messages", headers=headers).json()["pagination"]["total"] == 1


def test_dashboard_stats_count_deal_closed_now(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)
    _create_deal(client, token, status="closed_won", amount=5000)
    _create_deal(client, token, status="contacted", amount=800)

    res = client.get("/dashboard/stats", params={"granularity": "daily"}, headers=headers)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["granularity"] == "day"
    assert body["current"]["total_revenue"] == 5000.0
    assert body["current"]["deals_closed"] == 1
    assert body["current"]["deals_created"] == 2
    assert body["current"]["conversion_rate"] == 50
    assert body["previous"]["deals_created"] == 0
    assert body["growth"] == {"revenue_pct": 0, "deals_pct": 0, "conversion_pct": 0}
    assert body["previous"]["window_end"] == body["current"]["window_start"]

    invalid = client.get("/dashboard/stats", params={"granularity": "yearly"}, headers=headers)
    assert invalid.status_code == 422


def test_dashboard_summary_limits_open_deals_and_messages(test_context):
    client, _ = test_context
    token = _owner_token(client)
    headers = _auth_headers(token)

    for index in range(6):
        _create_deal(client, token, title=f"Open {index}", status="qualified", amount=100)
        client.post("/messages", json={"sender_name": f"Sender {index}", "content": "Hi"}, headers=headers)
    _create_deal(client, token, title="Won", status="closed_won", amount=900)

    res = client.get("/dashboard/summary", params={"granularity": "weekly"}, headers=headers)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["stats"]["granularity"] == "week"
    assert body["stats"]["current"]["total_revenue"] == 900.0
    assert len(body["deals_in_progress"]) == 5
    assert all(deal["status"] != "closed_won" for deal in body["deals_in_progress"])
    assert len(body["recent_messages"]) == 5
    assert body["recent_messages"][0]["sender_name"] == "Sender 5"


def test_pricing_catalog_and_custom_quote(test_context):
    client, _ = test_context

    plans = client.get("/pricing/plans")
    assert plans.status_code == 200
    items = plans.json()["items"]
    assert [(plan["name"], plan["price"]) for plan in items] == [
        ("Starter", 15000),
        ("Professional", 35000),
        ("Enterprise", 75000),
    ]
    assert [plan["name"] for plan in items if plan["popular"]] == ["Professional"]
    assert all(plan["currency"] == "PKR" for plan in items)

    quote = client.post("/pricing/custom-quote", json={"quantity": 12}).json()
    assert quote["total_price"] == 10200
    assert quote["unit_price"] == 850

    zero = client.post("/pricing/custom-quote", json={"quantity": -3}).json()
    assert zero["total_price"] == 0


def test_records_are_isolated_per_owner(test_context):
    client, _ = test_context
    owner_token = _owner_token(client, email="owner-a@example.com")
    other_token = _owner_token(client, email="owner-b@example.com")

    contact_id = _create_contact(client, owner_token)
    deal_id = _create_deal(client, owner_token, status="closed_won", amount=1000)
    invoice_id = client.post(
        "/invoices",
        json={"amount": 10},
        headers=_auth_headers(owner_token),
    ).json()["id"]

    other = _auth_headers(other_token)
    assert client.get(f"/contacts/{contact_id}", headers=other).status_code == 404
    assert client.get(f"/pipelines/{deal_id}", headers=other).status_code == 404
    assert client.get(f"/invoices/{invoice_id}", headers=other).status_code == 404
    assert client.get(f"/invoices/{invoice_id}/pdf", headers=other).status_code == 404
    assert client.get("/contacts", headers=other).json()["pagination"]["total"] == 0
    assert client.post("/pipelines", json={"contact_id": contact_id}, headers=other).status_code == 404

    stats = client.get("/dashboard/stats", params={"granularity": "monthly"}, headers=other).json()
    assert stats["current"]["deals_created"] == 0
