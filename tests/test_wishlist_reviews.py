"""Tests for the wishlist and review routes."""

from datetime import datetime

from bson import ObjectId

from database import REVIEWS, WISHLIST


class TestWishlist:
    """Tests for /wishlist."""

    def test_add_and_list(self, client, db, listing, headers) -> None:
        response = client.post(
            "/wishlist", json={"propertyId": listing, "userEmail": "b@x.com", "title": "Lake House"}, headers=headers["buyer"]
        )
        assert response.status_code == 200
        entries = client.get("/wishlist", params={"email": "b@x.com"}, headers=headers["buyer"]).json()
        assert [e["propertyId"] for e in entries] == [listing]

    def test_duplicate_add_conflicts(self, client, db, listing, headers) -> None:
        body = {"propertyId": listing, "userEmail": "b@x.com"}
        assert client.post("/wishlist", json=body, headers=headers["buyer"]).status_code == 200

        response = client.post("/wishlist", json=body, headers=headers["buyer"])

        assert response.status_code == 409
        assert response.json() == {"detail": "Property already in wishlist"}
        assert db[WISHLIST].count_documents({"propertyId": listing, "userEmail": "b@x.com"}) == 1

    def test_same_property_for_another_user(self, client, db, listing, headers) -> None:
        client.post("/wishlist", json={"propertyId": listing, "userEmail": "b@x.com"}, headers=headers["buyer"])
        response = client.post("/wishlist", json={"propertyId": listing, "userEmail": "c@x.com"}, headers=headers["buyer"])
        assert response.status_code == 200

    def test_user_email_is_required(self, client, listing, headers) -> None:
        response = client.post("/wishlist", json={"propertyId": listing}, headers=headers["buyer"])
        assert response.status_code == 422

    def test_get_and_remove(self, client, db, listing, headers) -> None:
        entry_id = client.post(
            "/wishlist", json={"propertyId": listing, "userEmail": "b@x.com"}, headers=headers["buyer"]
        ).json()["id"]

        assert client.get(f"/wishlist/{entry_id}", headers=headers["buyer"]).json()["userEmail"] == "b@x.com"
        assert client.delete(f"/wishlist/{entry_id}", headers=headers["buyer"]).json() == {"deleted": True}
        assert client.get(f"/wishlist/{entry_id}", headers=headers["buyer"]).status_code == 404


class TestReviews:
    """Tests for /reviews."""

    def test_create_stamps_reviewer_and_time(self, client, db, listing, headers) -> None:
        response = client.post(
            "/reviews", json={"propertyId": listing, "comment": "Great place", "rating": 5}, headers=headers["buyer"]
        )
        assert response.status_code == 200
        doc = db[REVIEWS].find_one({"_id": ObjectId(response.json()["id"])})
        assert doc["reviewer_email"] == "b@x.com"
        assert doc["createdAt"] is not None

    def test_reviewer_is_taken_from_token(self, client, db, listing, headers) -> None:
        response = client.post(
            "/reviews",
            json={"propertyId": listing, "comment": "Lovely", "reviewer_email": "c@x.com"},
            headers=headers["buyer"],
        )
        doc = db[REVIEWS].find_one({"_id": ObjectId(response.json()["id"])})
        assert doc["reviewer_email"] == "b@x.com"

    def test_token_without_email_cannot_review(self, client, db, listing, headers) -> None:
        response = client.post("/reviews", json={"propertyId": listing, "comment": "?"}, headers=headers["anonymous"])

        assert response.status_code == 403
        assert db[REVIEWS].count_documents({}) == 0

    def test_create_for_unknown_property(self, client, db, headers) -> None:
        response = client.post(
            "/reviews", json={"propertyId": str(ObjectId()), "comment": "?"}, headers=headers["buyer"]
        )
        assert response.status_code == 404

    def test_create_requires_identity(self, client, listing) -> None:
        response = client.post("/reviews", json={"propertyId": listing, "comment": "anon"})
        assert response.status_code == 401

    def test_list_filters_and_orders(self, client, db, listing, headers) -> None:
        db[REVIEWS].insert_many(
            [
                {"propertyId": listing, "reviewer_email": "b@x.com", "comment": "old", "createdAt": datetime(2025, 1, 1)},
                {"propertyId": listing, "reviewer_email": "c@x.com", "comment": "new", "createdAt": datetime(2025, 5, 1)},
                {"propertyId": "other", "reviewer_email": "b@x.com", "comment": "elsewhere", "createdAt": datetime(2025, 3, 1)},
            ]
        )
        by_property = client.get("/reviews", params={"propertyId": listing}, headers=headers["buyer"]).json()
        assert [r["comment"] for r in by_property] == ["new", "old"]

        everything = client.get("/reviews", headers=headers["buyer"]).json()
        assert [r["comment"] for r in everything] == ["new", "elsewhere", "old"]

        mine = client.get("/reviews/b@x.com", headers=headers["buyer"]).json()
        assert sorted(r["comment"] for r in mine) == ["elsewhere", "old"]

    def test_latest_reviews_are_public(self, client, db) -> None:
        db[REVIEWS].insert_many(
            [{"propertyId": "p", "comment": str(i), "createdAt": datetime(2025, 1, i + 1)} for i in range(6)]
        )
        response = client.get("/latest-review")
        assert [r["comment"] for r in response.json()] == ["5", "4", "3", "2"]
        assert len(client.get("/latest-review", params={"limit": 2}).json()) == 2

    def test_delete(self, client, db, headers) -> None:
        review_id = str(db[REVIEWS].insert_one({"propertyId": "p", "comment": "x"}).inserted_id)
        assert client.delete(f"/reviews/{review_id}", headers=headers["buyer"]).json() == {"deleted": True}
        assert client.delete(f"/reviews/{review_id}", headers=headers["buyer"]).status_code == 404
