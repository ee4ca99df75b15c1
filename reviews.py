"""Reviews submitted with the one-time link emailed after a booking."""

import logging
from typing import Dict, Optional

from pymongo.database import Database

from bookings import BookingEngine
from database import BOOKINGS
from errors import ConflictError, DomainError, ForbiddenError
from listings import add_review
from schemas import utcnow
from security import REVIEW_TOKEN, TokenService

logger = logging.getLogger(__name__)


def submit_review_via_token(
    db: Database,
    tokens: TokenService,
    engine: BookingEngine,
    home_id: str,
    token: str,
    comment: Optional[str],
    rating: Optional[int],
) -> Dict:
    """Add a review on behalf of the booking the review token was minted for.

    The token only works against its own home, only while the booking it
    names still belongs to the same client email, and only once.
    """
    claims = tokens.verify(token, REVIEW_TOKEN)
    if claims.get("home_id") != home_id:
        raise ForbiddenError("This review link belongs to a different home", "TokenListingMismatch")
    booking = engine.find_raw(claims.get("booking_id", ""))
    if booking["client_email"].lower() != str(claims.get("client_email", "")).lower():
        raise ForbiddenError("This review link was issued to a different client", "ClientMismatch")

    claimed = db[BOOKINGS].update_one(
        {"_id": booking["_id"], "review_used_at": None},
        {"$set": {"review_used_at": utcnow()}},
    )
    if claimed.modified_count == 0:
        raise ConflictError("This review link has already been used", "ReviewTokenUsed")
    try:
        home = add_review(db, home_id, comment, rating, booking_id=str(booking["_id"]))
    except DomainError:
        # Give the link back so the guest can correct the submission
        db[BOOKINGS].update_one({"_id": booking["_id"]}, {"$set": {"review_used_at": None}})
        raise
    logger.info("Review via link accepted for booking %s", booking["_id"])
    return home
