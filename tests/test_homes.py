"""Listing CRUD, search, direct reviews and owner stats."""

from bson import ObjectId

from tests.conftest import auth_header


class TestHomeCrud:
    def test_create_home_sets_owner_and_defaults(self, client, owner, make_home):
        home = make_home(amenities=["wifi", "wifi", "pool"], rating=5, owner_id="someone-else")
        assert home["owner_id"] == owner[0]["id"]
        assert home["rating"] == 0
        assert home["reviews"] == []
        assert home["amenities"] == ["wifi", "pool"]
        assert "version" not in home

    def test_create_requires_session(self, client):
        res = client.post("/homes", json={"name": "x"})
        assert res.status_code in (400, 401)

    def test_create_rejects_non_positive_price(self, client, owner):
        res = client.post(
            "/homes",
            json={
                "name": "Free",
                "description": "d",
                "location": "l",
                "price": 0,
                "image_urls": ["a.jpg"],
                "max_guests": 2,
            },
            headers=auth_header(owner[1]),
        )
        assert res.status_code == 400
        assert res.json()["error"] == "InvalidFields"

    def test_get_and_list(self, client, make_home):
        home = make_home()
        assert client.get(f"/homes/{home['id']}").json()["home"]["name"] == "Lake House"
        assert [h["id"] for h in client.get("/homes").json()["homes"]] == [home["id"]]

    def test_unknown_and_malformed_ids(self, client):
        res = client.get(f"/homes/{ObjectId()}")
        assert res.status_code == 404
        assert res.json()["error"] == "ListingNotFound"
        assert client.get("/homes/not-an-id").status_code == 400

    def test_owner_updates_but_cannot_reassign(self, client, owner, make_home):
        home = make_home()
        res = client.put(
            f"/homes/{home['id']}",
            json={"price": 150, "owner_id": "someone-else", "rating": 5},
            headers=auth_header(owner[1]),
        )
        assert res.status_code == 200
        updated = res.json()["home"]
        assert updated["price"] == 150
        assert updated["owner_id"] == owner[0]["id"]
        assert updated["rating"] == 0

    def test_non_owner_cannot_mutate(self, client, make_user, make_home):
        home = make_home()
        _, stranger = make_user("stranger")
        res = client.put(f"/homes/{home['id']}", json={"price": 1}, headers=auth_header(stranger))
        assert res.status_code == 403
        assert res.json()["error"] == "Forbidden"
        res = client.delete(f"/homes/{home['id']}", headers=auth_header(stranger))
        assert res.status_code == 403

    def test_admin_can_mutate(self, client, admin_token, make_home):
        home = make_home()
        res = client.put(f"/homes/{home['id']}", json={"name": "Renamed"}, headers=auth_header(admin_token))
        assert res.json()["home"]["name"] == "Renamed"
        assert client.delete(f"/homes/{home['id']}", headers=auth_header(admin_token)).status_code == 200
        assert client.get(f"/homes/{home['id']}").status_code == 404

    def test_owner_deletes(self, client, owner, make_home):
        home = make_home()
        res = client.delete(f"/homes/{home['id']}", headers=auth_header(owner[1]))
        assert res.json() == {"message": "Home deleted successfully"}


class TestSearch:
    def test_filters_are_conjunctive(self, client, make_home, make_user):
        cheap = make_home(name="Cabin", location="Denver, CO", price=80)
        pricey = make_home(name="Loft", location="denver downtown", price=300)
        villa = make_home(name="Villa", location="Miami, FL", price=120)

        def ids(params):
            return {h["id"] for h in client.get("/homes/search", params=params).json()["homes"]}

        assert ids({"location": "DENVER"}) == {cheap["id"], pricey["id"]}
        assert ids({"location": "denver", "maxPrice": 100}) == {cheap["id"]}
        assert ids({"minPrice": 100, "maxPrice": 200}) == {villa["id"]}

        _, reviewer = make_user("reviewer")
        client.post(f"/homes/{pricey['id']}/review", json={"comment": "great", "rating": 5},
                    headers=auth_header(reviewer))
        assert ids({"minRating": 4}) == {pricey["id"]}

    def test_location_is_literal_text(self, client, make_home):
        make_home(location="Lake Tahoe, CA")
        assert client.get("/homes/search", params={"location": ".*"}).json()["homes"] == []


class TestDirectReviews:
    def test_rating_is_mean_of_reviews(self, client, make_home, make_user):
        home = make_home()
        user, token = make_user("reviewer")
        for rating, expected in [(5, 5.0), (4, 4.5), (4, 4.3)]:
            res = client.post(
                f"/homes/{home['id']}/review", json={"comment": "nice", "rating": rating}, headers=auth_header(token)
            )
            assert res.status_code == 200
            assert res.json()["home"]["rating"] == expected

        reviews = client.get(f"/homes/{home['id']}/reviews").json()["reviews"]
        assert len(reviews) == 3
        assert reviews[0]["user_id"] == user["id"]
        assert reviews[0]["reviewer_name"] == "reviewer"

        single = client.get(f"/homes/{home['id']}/reviews/{reviews[1]['id']}")
        assert single.json()["review"]["rating"] == 4
        assert client.get(f"/homes/{home['id']}/reviews/{ObjectId()}").json()["error"] == "ReviewNotFound"

    def test_rating_out_of_range(self, client, make_home, make_user):
        home = make_home()
        _, token = make_user("reviewer")
        for rating in (0, 6):
            res = client.post(
                f"/homes/{home['id']}/review", json={"comment": "meh", "rating": rating}, headers=auth_header(token)
            )
            assert res.status_code == 400
            assert res.json()["error"] == "InvalidRating"

    def test_comment_required(self, client, make_home, make_user):
        home = make_home()
        _, token = make_user("reviewer")
        res = client.post(f"/homes/{home['id']}/review", json={"rating": 3}, headers=auth_header(token))
        assert res.status_code == 400
        assert res.json()["error"] == "MissingFields"

    def test_review_requires_session(self, client, make_home):
        home = make_home()
        res = client.post(f"/homes/{home['id']}/review", json={"comment": "hi", "rating": 3})
        assert res.status_code == 401


class TestOwnerStats:
    def test_owner_stats(self, client, owner, make_home, make_user):
        first = make_home()
        make_home(name="Second")
        _, token = make_user("reviewer")
        client.post(f"/homes/{first['id']}/review", json={"comment": "ok", "rating": 4}, headers=auth_header(token))

        res = client.get(f"/owner-stats/{owner[0]['id']}", headers=auth_header(token))
        assert res.status_code == 200
        stats = res.json()
        assert stats["total_homes"] == 2
        assert stats["total_reviews"] == 1
        assert stats["average_rating"] == 2.0
        assert stats["owner"]["username"] == "owner"

        assert client.get(f"/home-owner-stats/{first['id']}").json()["total_homes"] == 2

    def test_owner_without_homes(self, client, make_user):
        user, token = make_user("nobody")
        res = client.get(f"/owner-stats/{user['id']}", headers=auth_header(token))
        assert res.status_code == 404
