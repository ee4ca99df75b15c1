"""Rating aggregation and concurrent review submission."""

import pytest
from bson import ObjectId

import listings
from database import HOMES
from errors import InternalError, ValidationError
from schemas import Home, Review


def _insert_home(db):
    doc = Home(
        owner_id="owner-1",
        name="Cabin",
        description="Small cabin",
        location="Aspen",
        price=90,
        image_urls=["cabin.jpg"],
        max_guests=2,
    ).model_dump()
    return str(db[HOMES].insert_one(doc).inserted_id)


@pytest.mark.parametrize(
    "ratings, expected",
    [([], 0), ([3], 3.0), ([4, 2], 3.0), ([5, 4, 4], 4.3), ([1, 2, 2], 1.7)],
)
def test_average_rating(ratings, expected):
    assert listings.average_rating([{"rating": r} for r in ratings]) == expected


def test_concurrent_review_is_not_lost(db, monkeypatch):
    home_id = _insert_home(db)
    real_find = listings.find_home
    raced = []

    def find_then_race(db_, hid):
        doc = real_find(db_, hid)
        if not raced:
            raced.append(True)
            other = Review(user_id=str(ObjectId()), comment="first!", rating=5).model_dump()
            db_[HOMES].update_one(
                {"_id": doc["_id"]},
                {"$push": {"reviews": other}, "$set": {"rating": 5.0}, "$inc": {"version": 1}},
            )
        return doc

    monkeypatch.setattr(listings, "find_home", find_then_race)
    home = listings.add_review(db, home_id, "fine", 2, user_id=str(ObjectId()))

    assert [r["rating"] for r in home["reviews"]] == [5, 2]
    assert home["rating"] == 3.5


def test_gives_up_after_repeated_conflicts(db, monkeypatch):
    home_id = _insert_home(db)
    real_find = listings.find_home

    def always_stale(db_, hid):
        doc = real_find(db_, hid)
        db_[HOMES].update_one({"_id": doc["_id"]}, {"$inc": {"version": 1}})
        return doc

    monkeypatch.setattr(listings, "find_home", always_stale)
    with pytest.raises(InternalError):
        listings.add_review(db, home_id, "fine", 2, user_id=str(ObjectId()))


def test_review_needs_one_reviewer_reference(db):
    home_id = _insert_home(db)
    with pytest.raises(ValidationError) as exc:
        listings.add_review(db, home_id, "fine", 3)
    assert exc.value.code == "InvalidReviewer"
