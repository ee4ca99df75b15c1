"""Bookings: price calculation, review-link issuance and client email."""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database

from config import Settings, settings
from database import BOOKINGS, HOMES, sanitize, to_obj_id
from errors import ConflictError, ValidationError, booking_not_found, listing_not_found, missing_fields
from notifications import DispatchResult, EmailNotifier
from schemas import Booking, utcnow
from security import TokenService

logger = logging.getLogger(__name__)


def _as_datetime(d: date) -> datetime:
    # BSON has no date type; stays are stored as midnight UTC
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def nights_between(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days


def calculate_total_price(nights: int, nightly_price: float, surcharge_factor: float) -> float:
    return round(max(nights, 0) * nightly_price * surcharge_factor, 2)


def _present(booking: Dict) -> Dict:
    b = sanitize(booking)
    b.pop("review_token", None)
    return b


class BookingEngine:
    def __init__(
        self,
        db: Database,
        tokens: TokenService,
        notifier: EmailNotifier,
        config: Settings = settings,
    ) -> None:
        self.db = db
        self.tokens = tokens
        self.notifier = notifier
        self.surcharge_factor = config.booking_surcharge_factor
        self.enforce_capacity = config.enforce_guest_capacity
        self.frontend_base_url = config.frontend_base_url.rstrip("/")

    def _find(self, booking_id: str) -> Dict:
        booking = self.db[BOOKINGS].find_one({"_id": to_obj_id(booking_id)})
        if not booking:
            raise booking_not_found()
        return booking

    def _home_for(self, booking: Dict) -> Dict:
        home = self.db[HOMES].find_one({"_id": to_obj_id(booking["home_id"])})
        if not home:
            raise listing_not_found()
        return home

    def _issue_review_link(self, booking: Dict, only_if_absent: bool = False) -> bool:
        token = self.tokens.issue_review_token(str(booking["_id"]), booking["home_id"], booking["client_email"])
        link = f"{self.frontend_base_url}/homes/{booking['home_id']}/review?token={token}"
        query: Dict[str, Any] = {"_id": booking["_id"]}
        if only_if_absent:
            query["review_link"] = None
        res = self.db[BOOKINGS].update_one(query, {"$set": {"review_token": token, "review_link": link}})
        if res.modified_count == 0:
            return False
        booking["review_token"] = token
        booking["review_link"] = link
        return True

    def create_booking(
        self,
        home_id: Optional[str],
        client_name: Optional[str],
        client_email: Optional[str],
        client_phone: Optional[str],
        check_in: Optional[date],
        check_out: Optional[date],
        guests: Optional[int] = None,
    ) -> Tuple[Dict, DispatchResult]:
        """Validate, price and store a booking, then email the client.

        Checks run in order and the first failure wins: missing fields,
        unknown home, guest capacity, date range. The confirmation email is
        best-effort; its outcome is returned next to the stored booking.
        """
        if not all([home_id, client_name, client_email, client_phone, check_in, check_out]):
            raise missing_fields()

        home = self.db[HOMES].find_one({"_id": to_obj_id(home_id)})
        if not home:
            raise listing_not_found()

        if guests is None:
            guests = home["max_guests"] if home.get("is_guest_number_fixed") else 1
        if self.enforce_capacity and guests > home["max_guests"]:
            raise ValidationError(
                f"This home accepts at most {home['max_guests']} guests", "CapacityExceeded"
            )

        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in", "InvalidDateRange")

        total_price = calculate_total_price(nights_between(check_in, check_out), home["price"], self.surcharge_factor)

        doc = Booking(
            home_id=home_id,
            client_name=client_name,
            client_email=client_email,
            client_phone=client_phone,
            check_in=_as_datetime(check_in),
            check_out=_as_datetime(check_out),
            guests=guests,
            total_price=total_price,
        ).model_dump()
        res = self.db[BOOKINGS].insert_one(doc)
        doc["_id"] = res.inserted_id
        logger.info("Booking %s created for home %s (total %.2f)", res.inserted_id, home_id, total_price)

        self._issue_review_link(doc)
        result = self.notifier.booking_confirmation(doc, home)
        if not result.sent:
            logger.warning("Booking %s stored but confirmation email was not delivered", res.inserted_id)
        return _present(doc), result

    def create_review_link(self, booking_id: str) -> Dict:
        booking = self._find(booking_id)
        if booking.get("review_link"):
            raise ConflictError("A review link already exists for this booking", "ReviewLinkAlreadyExists")
        # Conditional write: a concurrent call may have stored a link since the read
        if not self._issue_review_link(booking, only_if_absent=True):
            raise ConflictError("A review link already exists for this booking", "ReviewLinkAlreadyExists")
        logger.info("Review link created for booking %s", booking_id)
        return _present(booking)

    def send_review_link(self, booking_id: str) -> Tuple[Dict, DispatchResult]:
        booking = self._find(booking_id)
        if not booking.get("review_link"):
            raise ValidationError("Review link has not been generated yet", "ReviewLinkNotGenerated")
        result = self.notifier.review_link(booking, self._home_for(booking))
        if result.sent:
            sent_at = utcnow()
            self.db[BOOKINGS].update_one({"_id": booking["_id"]}, {"$set": {"review_link_sent_at": sent_at}})
            booking["review_link_sent_at"] = sent_at
        return _present(booking), result

    def get_booking(self, booking_id: str) -> Dict:
        return _present(self._find(booking_id))

    def find_raw(self, booking_id: str) -> Dict:
        return self._find(booking_id)

    def list_bookings(self, home_id: Optional[str] = None) -> List[Dict]:
        q: Dict[str, Any] = {}
        if home_id:
            q["home_id"] = home_id
        bookings = [_present(b) for b in self.db[BOOKINGS].find(q).sort("created_at", -1)]
        homes = self._homes_by_id({b["home_id"] for b in bookings})
        for b in bookings:
            home = homes.get(b["home_id"])
            b["home"] = {"id": b["home_id"], "name": home["name"], "location": home["location"]} if home else None
        return bookings

    def list_booking_summaries(self, home_id: Optional[str] = None) -> List[Dict]:
        summaries = []
        for b in self.list_bookings(home_id):
            summaries.append(
                {
                    "booking_id": b["id"],
                    "booked_at": b["created_at"],
                    "check_in": b["check_in"],
                    "check_out": b["check_out"],
                    "client_name": b["client_name"],
                    "client_email": b["client_email"],
                    "client_phone": b["client_phone"],
                    "home_id": b["home_id"],
                    "home_name": b["home"]["name"] if b["home"] else None,
                    "total_price": b["total_price"],
                }
            )
        return summaries

    def _homes_by_id(self, home_ids) -> Dict[str, Dict]:
        if not home_ids:
            return {}
        cursor = self.db[HOMES].find({"_id": {"$in": [to_obj_id(i) for i in home_ids]}}, {"name": 1, "location": 1})
        return {str(h["_id"]): h for h in cursor}
