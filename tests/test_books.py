import pytest


@pytest.fixture
def staff_headers(make_user, auth_headers):
    make_user("librarian", role="librarian")
    return auth_headers("librarian")


def test_list_books_paginates(client, make_book):
    for title in ["Emma", "Dune", "Ulysses"]:
        make_book(title)

    response = client.get("/books", params={"limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert [b["title"] for b in body["data"]] == ["Dune", "Emma"]
    assert body["pagination"] == {
        "current_page": 1,
        "total_pages": 2,
        "total_books": 3,
        "has_next_page": True,
        "has_prev_page": False,
    }


def test_list_books_filters(client, make_book):
    make_book("Dune", categories=["Science Fiction"])
    make_book("Emma", authors=["Jane Austen"], categories=["Romance"])
    make_book("Persuasion", authors=["Jane Austen"], status="lost")

    by_author = client.get("/books", params={"author": "austen"}).json()["data"]
    by_category = client.get("/books", params={"category": "Romance"}).json()["data"]
    by_status = client.get("/books", params={"status": "lost"}).json()["data"]
    by_search = client.get("/books", params={"search": "dun"}).json()["data"]

    assert sorted(b["title"] for b in by_author) == ["Emma", "Persuasion"]
    assert [b["title"] for b in by_category] == ["Emma"]
    assert [b["title"] for b in by_status] == ["Persuasion"]
    assert [b["title"] for b in by_search] == ["Dune"]


def test_list_books_rejects_unknown_status(client):
    response = client.get("/books", params={"status": "stolen"})
    assert response.status_code == 400


def test_get_book(client, make_book):
    book = make_book(isbn="9780441172719", tags=["Classic"])

    data = client.get(f"/books/{book.id}").json()["data"]

    assert data["author"] == "Frank Herbert"
    assert data["isbn"] == "9780441172719"
    assert data["identifiers"] == [{"type": "ISBN_13", "identifier": "9780441172719"}]
    assert data["library"]["location"] == "Shelf A1"
    assert data["library"]["condition"] == "good"
    assert data["tags"] == ["classic"]


def test_get_missing_book(client):
    response = client.get("/books/nope")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Book not found"}


def test_create_book_as_staff(client, staff_headers):
    payload = {"title": "Emma", "authors": "Jane Austen", "isbn": "0141439580", "location": "B2"}

    response = client.post("/books", json=payload, headers=staff_headers)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["authors"] == ["Jane Austen"]
    assert data["status"] == "available"
    assert data["identifiers"][0]["type"] == "ISBN_10"

    duplicate = client.post("/books", json=payload, headers=staff_headers)
    assert duplicate.status_code == 409


def test_create_book_requires_staff(client, make_user, auth_headers):
    make_user()
    payload = {"title": "Emma", "location": "B2"}

    assert client.post("/books", json=payload).status_code == 401
    assert client.post("/books", json=payload, headers=auth_headers("reader")).status_code == 403


def test_create_book_validates_cover(client, staff_headers):
    payload = {"title": "Emma", "location": "B2", "cover": "not-a-url"}

    response = client.post("/books", json=payload, headers=staff_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request data"


def test_update_book(client, make_book, staff_headers):
    book = make_book()

    response = client.put(
        f"/books/{book.id}",
        json={"location": "Shelf Z9", "status": "maintenance", "description": "Spice"},
        headers=staff_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["library"]["location"] == "Shelf Z9"
    assert data["library"]["librarian"] == "tests"
    assert data["status"] == "maintenance"
    assert data["description"] == "Spice"
    assert data["title"] == "Dune"


def test_delete_book(client, make_book, make_user, staff_headers):
    free = make_book("Emma")
    lent = make_book("Dune")
    reader = make_user()
    client.post("/loans", json={"userId": reader.id, "bookId": lent.id})

    assert client.delete(f"/books/{lent.id}", headers=staff_headers).status_code == 409

    response = client.delete(f"/books/{free.id}", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Emma"
    assert client.get(f"/books/{free.id}").status_code == 404


def test_popular_books(client, make_book, make_user):
    reader = make_user()
    dune = make_book("Dune")
    make_book("Emma")
    loan = client.post("/loans", json={"userId": reader.id, "bookId": dune.id}).json()["data"]["loan"]
    client.patch(f"/loans/{loan['id']}/return", json={"userId": reader.id})

    data = client.get("/books/popular").json()["data"]

    assert [b["title"] for b in data] == ["Dune", "Emma"]
    assert data[0]["total_borrows"] == 1


def test_recent_books_skip_unavailable(client, make_book):
    make_book("Dune")
    make_book("Emma", status="lost")

    data = client.get("/books/recent").json()["data"]

    assert [b["title"] for b in data] == ["Dune"]


def test_book_stats(client, make_book):
    make_book("Dune")
    make_book("Emma", status="borrowed")
    make_book("Ulysses", status="damaged")

    data = client.get("/books/stats").json()["data"]

    assert data == {
        "total": 3,
        "available": 1,
        "borrowed": 1,
        "reserved": 0,
        "damaged": 1,
        "enriched": 0,
        "enrichment_rate": 0,
    }


def test_update_book_ignores_null_for_required_fields(client, make_book, staff_headers):
    book = make_book(isbn="9780441172719")

    response = client.put(
        f"/books/{book.id}",
        json={"status": None, "language": None, "identifiers": None, "title": None, "location": None},
        headers=staff_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "available"
    assert data["language"] == "fr"
    assert data["title"] == "Dune"
    assert data["isbn"] == "9780441172719"
    assert data["library"]["location"] == "Shelf A1"


def test_filters_match_accented_text(client, make_book):
    make_book("Germinal", authors=["Émile Zola"], categories=["Littérature"])
    make_book("Dune")

    by_category = client.get("/books", params={"category": "Littérature"}).json()["data"]
    by_author = client.get("/books", params={"author": "Zola"}).json()["data"]
    by_search = client.get("/books", params={"search": "Émile"}).json()["data"]

    assert [b["title"] for b in by_category] == ["Germinal"]
    assert [b["title"] for b in by_author] == ["Germinal"]
    assert [b["title"] for b in by_search] == ["Germinal"]


def test_blank_title_is_rejected(client, staff_headers):
    response = client.post("/books", json={"title": "   ", "location": "B2"}, headers=staff_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request data"


def test_title_and_location_are_trimmed(client, staff_headers):
    response = client.post("/books", json={"title": "  Emma ", "location": " B2 "}, headers=staff_headers)

    data = response.json()["data"]
    assert data["title"] == "Emma"
    assert data["library"]["location"] == "B2"


def test_recent_books_newest_first(client, make_book):
    make_book("Dune")
    make_book("Emma")
    make_book("Ulysses")

    data = client.get("/books/recent", params={"limit": 2}).json()["data"]

    assert [b["title"] for b in data] == ["Ulysses", "Emma"]
