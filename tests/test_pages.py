import pytest

from conftest import PASSWORD, signup


@pytest.fixture
def browser(client):
    """A signed-in page session."""
    signup(client, "paula")
    response = client.post("/sign-in", data={"id": "paula", "password": PASSWORD}, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/home"
    return client


@pytest.mark.parametrize("path", ["/home", "/home/1", "/community", "/recommendations", "/profile"])
def test_private_pages_redirect_to_sign_in(client, path):
    response = client.get(path, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/sign-in"


@pytest.mark.parametrize("path", ["/", "/sign-in", "/sign-up", "/explore"])
def test_public_pages_render(client, catalogue, path):
    response = client.get(path)
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]


def test_sign_up_page_round_trip(client):
    response = client.post(
        "/sign-up",
        data={"firstName": "New", "lastName": "Person", "email": "new@example.com", "username": "newbie", "password": PASSWORD},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/sign-in?registered=1"

    duplicate = client.post(
        "/sign-up",
        data={"firstName": "New", "lastName": "Person", "email": "new@example.com", "username": "other", "password": PASSWORD},
    )
    assert duplicate.status_code == 409
    assert "Email already in use" in duplicate.text


def test_bad_sign_in_rerenders_with_error(client):
    response = client.post("/sign-in", data={"id": "nobody", "password": "whatever"})
    assert response.status_code == 401
    assert "Invalid credentials" in response.text


def test_collection_pages(browser, catalogue):
    response = browser.post("/home/collections", data={"name": "Weekend"}, follow_redirects=False)
    assert response.status_code == 303
    cid = browser.get("/api/collections").json()[0]["collectionId"]

    duplicate = browser.post("/home/collections", data={"name": "Weekend"})
    assert duplicate.status_code == 409
    assert "Collection name already exists for this user" in duplicate.text
    assert "Weekend" in duplicate.text

    ambiguous = browser.post(f"/home/{cid}/add", data={"title": "Laugh Track"})
    assert ambiguous.status_code == 409
    assert "Several movies match" in ambiguous.text

    added = browser.post(f"/home/{cid}/add", data={"movUid": "5"}, follow_redirects=False)
    assert added.status_code == 303
    page = browser.get(f"/home/{cid}")
    assert page.status_code == 200
    assert "Laugh Track" in page.text

    removed = browser.post(f"/home/{cid}/remove", data={"movUid": "5"}, follow_redirects=False)
    assert removed.status_code == 303
    assert browser.get(f"/api/collections/{cid}/movie").json() == []

    browser.post(f"/home/collections/{cid}/rename", data={"name": "Sunday"})
    assert browser.get("/api/collections").json()[0]["name"] == "Sunday"
    browser.post(f"/home/collections/{cid}/delete")
    assert browser.get("/api/collections").json() == []


def test_movie_page_actions(browser, catalogue):
    assert browser.get("/explore/1").status_code == 200
    assert browser.get("/explore/999").status_code == 404

    assert browser.post("/explore/1/rate", data={"rating_value": "4"}, follow_redirects=False).status_code == 303
    assert browser.post("/explore/1/watch", data={"watched_on": "2024-02-03"}, follow_redirects=False).status_code == 303
    detail = browser.get("/api/movie/1").json()["user"]
    assert detail["rating_value"] == 4
    assert detail["watched"] is True

    bad = browser.post("/explore/1/rate", data={"rating_value": "9"})
    assert bad.status_code == 400
    assert "Rating must be between 1 and 5" in bad.text


def test_community_page(browser, make_client):
    other = make_client()
    signup(other, "quinn")

    assert browser.post("/community/follow", data={"email": "quinn@example.com"}, follow_redirects=False).status_code == 303
    assert "quinn" in browser.get("/community").text

    myself = browser.post("/community/follow", data={"email": "paula@example.com"})
    assert myself.status_code == 400
    assert "You cannot follow yourself" in myself.text


def test_recommendations_and_profile_render(browser, catalogue):
    browser.put("/api/movie/2/watch")
    assert browser.get("/recommendations").status_code == 200
    assert browser.get("/recommendations?sortBy=rating").status_code == 200
    profile = browser.get("/profile?sort=plays")
    assert profile.status_code == 200
    assert "Laugh Track" in profile.text


def test_sign_out_clears_session(browser):
    response = browser.get("/sign-out", follow_redirects=False)
    assert response.status_code == 303
    assert browser.get("/home", follow_redirects=False).status_code == 303
