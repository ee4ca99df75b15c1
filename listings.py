"""Home listings: CRUD, search, embedded reviews and owner statistics."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from pymongo.database import Database

from database import BOOKINGS, HOMES, USERS, sanitize, to_obj_id
from errors import InternalError, NotFoundError, ValidationError, forbidden, listing_not_found, missing_fields
from schemas import Home, Review
from security import Identity, can_mutate

logger = logging.getLogger(__name__)

# Fields a caller may set; owner_id, rating, reviews and version are derived
EDITABLE_FIELDS = {
    "name",
    "description",
    "location",
    "price",
    "image_urls",
    "bedrooms",
    "beds",
    "max_guests",
    "is_guest_number_fixed",
    "amenities",
}
MAX_REVIEW_ATTEMPTS = 5


def average_rating(reviews: Iterable[Dict[str, Any]]) -> float:
    ratings = [r["rating"] for r in reviews]
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings), 1)


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _attach_reviewer_names(db: Database, homes: List[Dict]) -> List[Dict]:
    """Resolve each review's reviewer reference to a display name."""
    user_ids = set()
    booking_ids = set()
    for h in homes:
        for r in h.get("reviews", []):
            if r.get("user_id"):
                user_ids.add(r["user_id"])
            elif r.get("booking_id"):
                booking_ids.add(r["booking_id"])
    names: Dict[str, str] = {}
    if user_ids:
        for u in db[USERS].find({"_id": {"$in": [to_obj_id(i) for i in user_ids]}}, {"username": 1}):
            names["user:" + str(u["_id"])] = u["username"]
    if booking_ids:
        for b in db[BOOKINGS].find({"_id": {"$in": [to_obj_id(i) for i in booking_ids]}}, {"client_name": 1}):
            names["booking:" + str(b["_id"])] = b["client_name"]
    for h in homes:
        for r in h.get("reviews", []):
            key = f"user:{r['user_id']}" if r.get("user_id") else f"booking:{r.get('booking_id')}"
            r["reviewer_name"] = names.get(key, "Former guest")
    return homes


def _present(db: Database, docs: List[Dict]) -> List[Dict]:
    homes = [sanitize(d) for d in docs]
    for h in homes:
        h.pop("version", None)
    return _attach_reviewer_names(db, homes)


def find_home(db: Database, home_id: str) -> Dict:
    """Raw home document, or ListingNotFound."""
    home = db[HOMES].find_one({"_id": to_obj_id(home_id)})
    if not home:
        raise listing_not_found()
    return home


def list_homes(db: Database) -> List[Dict]:
    return _present(db, list(db[HOMES].find()))


def get_home(db: Database, home_id: str) -> Dict:
    return _present(db, [find_home(db, home_id)])[0]


def create_home(db: Database, owner: Identity, fields: Dict[str, Any]) -> Dict:
    data = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "amenities" in data:
        data["amenities"] = _dedupe(data["amenities"])
    doc = Home(owner_id=owner.id, **data).model_dump()
    res = db[HOMES].insert_one(doc)
    doc["_id"] = res.inserted_id
    logger.info("Home %s created by %s", res.inserted_id, owner.id)
    return _present(db, [doc])[0]


def update_home(db: Database, identity: Identity, home_id: str, fields: Dict[str, Any]) -> Dict:
    home = find_home(db, home_id)
    if not can_mutate(identity, home.get("owner_id")):
        raise forbidden("Only the owner or an admin may modify this home")
    changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "amenities" in changes:
        changes["amenities"] = _dedupe(changes["amenities"])
    if changes:
        db[HOMES].update_one({"_id": home["_id"]}, {"$set": changes, "$inc": {"version": 1}})
    return get_home(db, home_id)


def delete_home(db: Database, identity: Identity, home_id: str) -> None:
    home = find_home(db, home_id)
    if not can_mutate(identity, home.get("owner_id")):
        raise forbidden("Only the owner or an admin may delete this home")
    db[HOMES].delete_one({"_id": home["_id"]})
    logger.info("Home %s deleted by %s", home_id, identity.id)


def search_homes(
    db: Database,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_rating: Optional[float] = None,
) -> List[Dict]:
    q: Dict[str, Any] = {}
    if location:
        q["location"] = {"$regex": re.escape(location), "$options": "i"}
    if min_price is not None:
        q.setdefault("price", {})["$gte"] = min_price
    if max_price is not None:
        q.setdefault("price", {})["$lte"] = max_price
    if min_rating is not None:
        q["rating"] = {"$gte": min_rating}
    return _present(db, list(db[HOMES].find(q)))


def add_review(
    db: Database,
    home_id: str,
    comment: Optional[str],
    rating: Optional[int],
    user_id: Optional[str] = None,
    booking_id: Optional[str] = None,
) -> Dict:
    """Append a review and recompute the home's rating.

    The push and the recomputed mean are written together, guarded by the
    document's ``version`` so concurrent submissions retry instead of
    overwriting each other.
    """
    if not comment or not comment.strip() or rating is None:
        raise missing_fields("Comment and rating are required")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", "InvalidRating")
    if (user_id is None) == (booking_id is None):
        raise ValidationError("A review needs exactly one reviewer reference", "InvalidReviewer")

    review = Review(user_id=user_id, booking_id=booking_id, comment=comment.strip(), rating=rating).model_dump()
    for attempt in range(MAX_REVIEW_ATTEMPTS):
        home = find_home(db, home_id)
        reviews = home.get("reviews", []) + [review]
        res = db[HOMES].update_one(
            {"_id": home["_id"], "version": home.get("version", 0)},
            {
                "$push": {"reviews": review},
                "$set": {"rating": average_rating(reviews)},
                "$inc": {"version": 1},
            },
        )
        if res.modified_count == 1:
            logger.info("Review %s added to home %s", review["id"], home_id)
            return get_home(db, home_id)
        logger.warning("Concurrent update on home %s, retrying review (attempt %d)", home_id, attempt + 1)
    raise InternalError("Could not save review, please retry", "ReviewConflict")


def list_reviews(db: Database, home_id: str) -> List[Dict]:
    return get_home(db, home_id)["reviews"]


def get_review(db: Database, home_id: str, review_id: str) -> Dict:
    for r in list_reviews(db, home_id):
        if r["id"] == review_id:
            return r
    raise NotFoundError("Review not found", "ReviewNotFound")


def owner_stats(db: Database, owner_id: str) -> Dict:
    owner = db[USERS].find_one({"_id": to_obj_id(owner_id)})
    homes = list(db[HOMES].find({"owner_id": owner_id}, {"reviews": 1, "rating": 1}))
    if not homes:
        raise NotFoundError("No homes found for this owner", "NoHomesForOwner")
    if not owner:
        raise NotFoundError("Owner not found", "UserNotFound")
    return {
        "owner_id": owner_id,
        "total_homes": len(homes),
        "total_reviews": sum(len(h.get("reviews", [])) for h in homes),
        "average_rating": round(sum(h.get("rating", 0) for h in homes) / len(homes), 2),
        "owner": {
            "username": owner["username"],
            "company_name": owner.get("company_name"),
            "company_description": owner.get("company_description"),
        },
    }


def home_owner_stats(db: Database, home_id: str) -> Dict:
    return owner_stats(db, find_home(db, home_id)["owner_id"])
