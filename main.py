import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import accounts
import listings
from bookings import BookingEngine
from config import settings
from database import ensure_indexes, get_db
from errors import DomainError
from notifications import DispatchResult, EmailNotifier, get_notifier
from reviews import submit_review_via_token
from schemas import Role
from security import (
    Identity,
    RevocationStore,
    TokenService,
    get_current_identity,
    get_revocation_store,
    get_token_service,
    require_role,
)

logging.basicConfig(
    level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.dependency_overrides.get(get_db, get_db)()
    ensure_indexes(db)
    accounts.ensure_initial_admin(db, settings)
    yield


# App and CORS
app = FastAPI(title="Homes Rental API", lifespan=lifespan)
app.state.revocation_store = RevocationStore()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    code = "MissingFields" if any(e.get("type") == "missing" for e in errors) else "InvalidFields"
    details = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors]
    return JSONResponse(
        status_code=400,
        content={"message": "Missing or invalid fields", "error": code, "details": details},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error", "error": "InternalError"})


def get_booking_engine(
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    notifier: EmailNotifier = Depends(get_notifier),
) -> BookingEngine:
    return BookingEngine(db, tokens, notifier, settings)


def with_notification(payload: Dict[str, Any], result: DispatchResult) -> Dict[str, Any]:
    payload["notification_sent"] = result.sent
    if result.warning:
        payload["warning"] = result.warning
    return payload


# Request Models
class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=40)
    email: EmailStr
    password: str
    address: Optional[str] = Field(None, max_length=400)
    phone_number: Optional[str] = None
    id_number: Optional[str] = None
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    languages_spoken: Optional[List[str]] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UpdateUserRequest(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=40)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    address: Optional[str] = Field(None, max_length=400)
    phone_number: Optional[str] = None
    id_number: Optional[str] = None
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    languages_spoken: Optional[List[str]] = None


class UpdateRoleRequest(BaseModel):
    role: Role


class CreateHomeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    image_urls: List[str] = Field(..., min_length=1)
    bedrooms: int = Field(1, ge=0)
    beds: int = Field(1, ge=0)
    max_guests: int = Field(..., ge=1)
    is_guest_number_fixed: bool = False
    amenities: List[str] = []


class UpdateHomeRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0)
    image_urls: Optional[List[str]] = Field(None, min_length=1)
    bedrooms: Optional[int] = Field(None, ge=0)
    beds: Optional[int] = Field(None, ge=0)
    max_guests: Optional[int] = Field(None, ge=1)
    is_guest_number_fixed: Optional[bool] = None
    amenities: Optional[List[str]] = None


class ReviewRequest(BaseModel):
    comment: Optional[str] = None
    rating: Optional[int] = None


class ReviewViaLinkRequest(ReviewRequest):
    token: str


class BookingRequest(BaseModel):
    home_id: str
    client_name: str = Field(..., min_length=1)
    client_email: EmailStr
    client_phone: str = Field(..., min_length=1)
    check_in: date
    check_out: date
    guests: Optional[int] = Field(None, ge=1)


# Auth Routes
@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    user = accounts.signup(db, **payload.model_dump())
    return {"message": "User created successfully", "user": user}


@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), tokens: TokenService = Depends(get_token_service)):
    session = accounts.login(db, tokens, payload.email, payload.password)
    return {"message": "Logged in successfully", **session}


@app.post("/auth/signout")
def signout(
    identity: Identity = Depends(get_current_identity),
    revoked: RevocationStore = Depends(get_revocation_store),
):
    accounts.signout(revoked, identity)
    return {"message": "Signed out successfully"}


@app.get("/auth/me")
def me(identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return {"message": "Current user", "user": accounts.get_user(db, identity, identity.id)}


# User Routes
@app.get("/users")
def list_users(admin: Identity = Depends(require_role(Role.admin)), db: Database = Depends(get_db)):
    return {"message": "Users retrieved", "users": accounts.list_users(db)}


@app.get("/users/{user_id}")
def get_user(user_id: str, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return {"message": "User retrieved", "user": accounts.get_user(db, identity, user_id)}


@app.put("/users/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    identity: Identity = Depends(get_current_identity),
    db: Database = Depends(get_db),
):
    user = accounts.update_user(db, identity, user_id, payload.model_dump(exclude_none=True))
    return {"message": "User updated successfully", "user": user}


@app.put("/users/{user_id}/role")
def update_role(
    user_id: str,
    payload: UpdateRoleRequest,
    admin: Identity = Depends(require_role(Role.admin)),
    db: Database = Depends(get_db),
):
    return {"message": "User role updated successfully", "user": accounts.update_role(db, user_id, payload.role)}


@app.delete("/users/{user_id}")
def delete_user(user_id: str, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    accounts.delete_user(db, identity, user_id)
    return {"message": "User deleted successfully"}


# Home Routes
@app.get("/homes")
def list_homes(db: Database = Depends(get_db)):
    return {"message": "Homes retrieved", "homes": listings.list_homes(db)}


@app.get("/homes/search")
def search_homes(
    location: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    min_rating: Optional[float] = Query(None, alias="minRating"),
    db: Database = Depends(get_db),
):
    homes = listings.search_homes(db, location, min_price, max_price, min_rating)
    return {"message": "Homes retrieved", "homes": homes}


@app.post("/homes", status_code=201)
def create_home(
    payload: CreateHomeRequest,
    identity: Identity = Depends(get_current_identity),
    db: Database = Depends(get_db),
):
    return {"message": "Home created successfully", "home": listings.create_home(db, identity, payload.model_dump())}


@app.get("/homes/{home_id}")
def get_home(home_id: str, db: Database = Depends(get_db)):
    return {"message": "Home retrieved", "home": listings.get_home(db, home_id)}


@app.put("/homes/{home_id}")
def update_home(
    home_id: str,
    payload: UpdateHomeRequest,
    identity: Identity = Depends(get_current_identity),
    db: Database = Depends(get_db),
):
    home = listings.update_home(db, identity, home_id, payload.model_dump(exclude_none=True))
    return {"message": "Home updated successfully", "home": home}


@app.delete("/homes/{home_id}")
def delete_home(home_id: str, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    listings.delete_home(db, identity, home_id)
    return {"message": "Home deleted successfully"}


@app.post("/homes/{home_id}/review")
def add_review(
    home_id: str,
    payload: ReviewRequest,
    identity: Identity = Depends(get_current_identity),
    db: Database = Depends(get_db),
):
    home = listings.add_review(db, home_id, payload.comment, payload.rating, user_id=identity.id)
    return {"message": "Review added successfully", "home": home}


@app.post("/homes/{home_id}/review-link")
def add_review_via_link(
    home_id: str,
    payload: ReviewViaLinkRequest,
    db: Database = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    engine: BookingEngine = Depends(get_booking_engine),
):
    home = submit_review_via_token(db, tokens, engine, home_id, payload.token, payload.comment, payload.rating)
    return {"message": "Review added successfully", "home": home}


@app.get("/homes/{home_id}/reviews")
def list_reviews(home_id: str, db: Database = Depends(get_db)):
    return {"message": "Reviews retrieved", "reviews": listings.list_reviews(db, home_id)}


@app.get("/homes/{home_id}/reviews/{review_id}")
def get_review(home_id: str, review_id: str, db: Database = Depends(get_db)):
    return {"message": "Review retrieved", "review": listings.get_review(db, home_id, review_id)}


@app.get("/homes/{home_id}/bookings")
def list_home_bookings(
    home_id: str,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return {"message": "Bookings retrieved", "bookings": engine.list_bookings(home_id)}


# Booking Routes
@app.post("/bookings", status_code=201)
def create_booking(payload: BookingRequest, engine: BookingEngine = Depends(get_booking_engine)):
    booking, result = engine.create_booking(
        payload.home_id,
        payload.client_name,
        payload.client_email,
        payload.client_phone,
        payload.check_in,
        payload.check_out,
        payload.guests,
    )
    message = "Booking created" if result.sent else "Booking created, but the confirmation email could not be sent"
    return with_notification({"message": message, "booking": booking}, result)


@app.get("/bookings")
def list_bookings(
    home_id: Optional[str] = None,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return {"message": "Bookings retrieved", "bookings": engine.list_bookings(home_id)}


@app.get("/bookings/summary")
def list_booking_summaries(
    home_id: Optional[str] = None,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return {"message": "Bookings retrieved", "bookings": engine.list_booking_summaries(home_id)}


@app.get("/bookings/{booking_id}")
def get_booking(
    booking_id: str,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    return {"message": "Booking retrieved", "booking": engine.get_booking(booking_id)}


@app.post("/bookings/{booking_id}/create-review-link", status_code=201)
def create_review_link(
    booking_id: str,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    booking = engine.create_review_link(booking_id)
    return {"message": "Review link created", "review_link": booking["review_link"], "booking": booking}


@app.post("/bookings/{booking_id}/send-review-link")
def send_review_link(
    booking_id: str,
    admin: Identity = Depends(require_role(Role.admin)),
    engine: BookingEngine = Depends(get_booking_engine),
):
    booking, result = engine.send_review_link(booking_id)
    message = "Review link sent" if result.sent else "Review link could not be sent"
    return with_notification({"message": message, "booking": booking}, result)


# Owner stats
@app.get("/owner-stats/{owner_id}")
def owner_stats(owner_id: str, identity: Identity = Depends(get_current_identity), db: Database = Depends(get_db)):
    return {"message": "Owner stats retrieved", **listings.owner_stats(db, owner_id)}


@app.get("/home-owner-stats/{home_id}")
def home_owner_stats(home_id: str, db: Database = Depends(get_db)):
    return {"message": "Owner stats retrieved", **listings.home_owner_stats(db, home_id)}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Homes Rental API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        collections = db.list_collection_names()
        return {"message": "ok", "backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        return {"message": "degraded", "backend": "ok", "database": f"error: {e}"}
