from datetime import datetime, timedelta

from library_api import models


def borrow(client, user_id, book_id):
    return client.post("/loans", json={"userId": user_id, "bookId": book_id})


def test_get_loans_me_unauthenticated(client):
    response = client.get("/loans/me")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_get_loans_me_authenticated(client, make_user, make_book, auth_headers):
    user = make_user()
    borrow(client, user.id, make_book().id)

    response = client.get("/loans/me", headers=auth_headers("reader"))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [loan["book_title"] for loan in body["data"]] == ["Dune"]


def test_borrow_book_success(client, make_user, make_book):
    user = make_user()
    book = make_book()

    response = borrow(client, user.id, book.id)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Book borrowed"
    loan = body["data"]["loan"]
    assert loan["book_id"] == book.id
    assert loan["user_id"] == user.id
    assert loan["status"] == "active"
    borrowed = datetime.fromisoformat(loan["borrowed_date"])
    due = datetime.fromisoformat(loan["due_date"])
    assert due - borrowed == timedelta(days=14)
    assert body["data"]["book"] == {
        "id": book.id,
        "title": "Dune",
        "author": "Frank Herbert",
        "cover": None,
        "status": "borrowed",
        "location": "Shelf A1",
    }


def test_borrow_book_unavailable(client, make_user, make_book):
    first = make_user("first")
    second = make_user("second")
    book = make_book()
    assert borrow(client, first.id, book.id).status_code == 201

    response = borrow(client, second.id, book.id)

    assert response.status_code == 409
    assert response.json() == {"success": False, "error": "This book is not available (status: borrowed)"}


def test_borrow_unknown_book_or_user(client, make_user, make_book):
    user = make_user()
    assert borrow(client, user.id, "missing").status_code == 404
    assert borrow(client, 4242, make_book().id).status_code == 404


def test_borrow_requires_both_ids(client):
    response = client.post("/loans", json={"bookId": "abc"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request data"
    assert any("userId" in detail for detail in body["details"])


def test_return_and_renew_flow(client, make_user, make_book):
    user = make_user()
    book = make_book()
    loan = borrow(client, user.id, book.id).json()["data"]["loan"]

    renewed = client.patch(f"/loans/{loan['id']}/renew", json={"userId": user.id})
    assert renewed.status_code == 200
    assert renewed.json()["data"]["renewal_count"] == 1
    assert renewed.json()["data"]["status"] == "renewed"

    returned = client.patch(f"/loans/{loan['id']}/return", json={"userId": user.id})
    assert returned.status_code == 200
    assert returned.json()["data"]["status"] == "returned"
    assert returned.json()["data"]["returned_date"] is not None
    assert client.get(f"/books/{book.id}").json()["data"]["status"] == "available"

    again = client.patch(f"/loans/{loan['id']}/return", json={"userId": user.id})
    assert again.status_code == 404


def test_renewal_limit(client, make_user, make_book):
    user = make_user()
    loan = borrow(client, user.id, make_book().id).json()["data"]["loan"]

    for _ in range(2):
        assert client.patch(f"/loans/{loan['id']}/renew", json={"userId": user.id}).status_code == 200
    response = client.patch(f"/loans/{loan['id']}/renew", json={"userId": user.id})

    assert response.status_code == 400
    assert response.json()["error"] == "This loan cannot be renewed"


def test_user_loans_include_catalog_details(client, make_user, make_book):
    user = make_user()
    book = make_book(isbn="9780441172719")
    borrow(client, user.id, book.id)

    response = client.get(f"/loans/user/{user.id}")

    assert response.status_code == 200
    [loan] = response.json()["data"]
    assert loan["title"] == "Dune"
    assert loan["isbn"] == "9780441172719"
    assert loan["is_overdue"] is False
    assert loan["book"]["location"] == "Shelf A1"


def test_list_loans_includes_borrower(client, make_user, make_book):
    user = make_user()
    borrow(client, user.id, make_book().id)

    [loan] = client.get("/loans").json()["data"]

    assert loan["user"]["email"] == "reader@example.com"


def test_get_overdue_loans_as_user(client, make_user, auth_headers):
    make_user()
    response = client.get("/loans/overdue", headers=auth_headers("reader"))
    assert response.status_code == 403


def test_get_overdue_loans_as_librarian(client, make_user, make_book, auth_headers, db):
    user = make_user()
    make_user("librarian", role="librarian")
    loan = borrow(client, user.id, make_book().id).json()["data"]["loan"]
    stored = db.get(models.Loan, loan["id"])
    stored.due_date = models.utcnow() - timedelta(days=2)
    db.commit()

    response = client.get("/loans/overdue", headers=auth_headers("librarian"))

    assert response.status_code == 200
    [overdue] = response.json()["data"]
    assert overdue["id"] == loan["id"]
    assert overdue["is_overdue"] is True
    assert overdue["status"] == "active"


def test_staff_return_by_book(client, make_user, make_book, auth_headers):
    user = make_user()
    make_user("librarian", role="librarian")
    book = make_book()
    borrow(client, user.id, book.id)

    response = client.patch(f"/loans/book/{book.id}/return", headers=auth_headers("librarian"))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "returned"


def test_export_loans_csv_authenticated(client, make_user, make_book, auth_headers):
    user = make_user()
    borrow(client, user.id, make_book().id)

    response = client.get("/loans/me/export", headers=auth_headers("reader"))

    assert response.status_code == 200
    assert "text/csv" in response.headers["content-type"]
    assert "attachment; filename=loan_history.csv" in response.headers["content-disposition"]
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Loan ID,Book Title")
    assert "Dune" in lines[1]


def test_export_loans_pdf_authenticated(client, make_user, auth_headers):
    make_user()

    response = client.get("/loans/me/export/pdf", headers=auth_headers("reader"))

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == "attachment; filename=loan_history.pdf"
    assert response.content.startswith(b"%PDF")
