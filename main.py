import logging
from typing import Optional, List, Literal
from datetime import date, datetime

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

import config
import database
import apartments
import offers
from currency import convert, format_price
from database import get_db
from errors import RentalError, UnsupportedCurrency, UpstreamUnavailable
from schemas import Apartment, ApartmentStatus, OfferStatus, OfferType
from security import (
    MAX_PASSWORD_BYTES,
    CurrentUser,
    authenticate_user,
    get_current_user,
    project_user,
    register_user,
    require_roles,
    token_response,
)

logging.basicConfig(
    format=config.LOG_FORMAT,
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rental Offers API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error("Could not ensure indexes: %s", e)


# ------------------------
# Error handling
# ------------------------
@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    content = {"detail": exc.detail, "error": type(exc).__name__}
    if isinstance(exc, UnsupportedCurrency):
        content["code"] = exc.code
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=headers,
    )


@app.exception_handler(ConnectionFailure)
async def database_unavailable_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database unreachable during %s %s: %s", request.method, request.url.path, exc)
    err = UpstreamUnavailable()
    return JSONResponse(status_code=err.status_code, content={"detail": err.detail, "error": "UpstreamUnavailable"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error during %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": "InternalError"})


# ------------------------
# Models
# ------------------------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    role: Literal["owner", "tenant"] = "tenant"

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return v


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    status: ApartmentStatus


class OfferCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    apartment_id: str
    offer_type: OfferType
    bid_amount: Optional[float] = Field(None, ge=0)
    move_in_date: date
    duration: int = 12
    message: Optional[str] = Field(None, max_length=2000)


class OfferDecision(BaseModel):
    status: Literal["accepted", "rejected"]


class OfferOut(BaseModel):
    id: str
    apartment_id: str
    tenant_id: str
    bid_amount: float
    offer_type: OfferType
    move_in_date: date
    duration: int
    message: Optional[str] = None
    status: OfferStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@app.get("/")
def root():
    return {"name": "Rental Offers API", "status": "ok"}


@app.get("/health")
def health():
    response = {
        "backend": "running",
        "database": "not configured",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()
            response["database"] = "connected"
        except PyMongoError as e:
            response["database"] = f"error: {str(e)[:80]}"
    return response


# ------------------------
# Auth
# ------------------------
@app.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = register_user(db, payload.username, payload.email, payload.password, payload.role)
    return {**token_response(user), "user": user}


@app.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = authenticate_user(db, payload.username, payload.password)
    return {
        **token_response(user),
        "userId": user["id"],
        "username": user["username"],
        "role": user["role"],
        "email": user["email"],
    }


@app.get("/me", response_model=CurrentUser)
def me(current: CurrentUser = Depends(get_current_user)):
    return current


@app.post("/refresh")
def refresh(current: CurrentUser = Depends(get_current_user)):
    user = project_user(current.model_dump())
    return {**token_response(user), "user": user}


# ------------------------
# Apartments
# ------------------------
@app.post("/apartments", status_code=201)
def create_apartment(
    payload: Apartment,
    current: CurrentUser = Depends(require_roles("owner", "admin")),
    db: Database = Depends(get_db),
):
    return apartments.create_apartment(db, current, payload)


@app.get("/apartments")
def list_apartments(
    status: Optional[ApartmentStatus] = None,
    location: Optional[str] = Query(None, description="Case-insensitive match on location"),
    min_rent: Optional[float] = None,
    max_rent: Optional[float] = None,
    bedrooms: Optional[int] = None,
    owner_id: Optional[str] = None,
    sort_by: str = Query("created_at", pattern="^(created_at|rent|bedrooms)$"),
    sort_dir: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return apartments.list_apartments(
        db,
        status=status,
        location=location,
        min_rent=min_rent,
        max_rent=max_rent,
        bedrooms=bedrooms,
        owner_id=owner_id,
        sort_by=sort_by,
        sort_dir=sort_dir,
        page=page,
        page_size=page_size,
    )


@app.get("/apartments/{apartment_id}")
def get_apartment(apartment_id: str, db: Database = Depends(get_db)):
    return apartments.get_apartment(db, apartment_id)


@app.get("/apartments/{apartment_id}/price")
def get_apartment_price(apartment_id: str, currency: str = "EUR", db: Database = Depends(get_db)):
    listing = apartments.get_apartment(db, apartment_id)
    code = currency.upper()
    amount = convert(listing["rent"], listing.get("currency", "EUR"), code)
    return {"amount": round(amount, 2), "currency": code, "formatted": format_price(amount, code)}


@app.put("/apartments/{apartment_id}")
def update_apartment(
    apartment_id: str,
    payload: Apartment,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return apartments.update_apartment(db, apartment_id, current, payload)


@app.patch("/apartments/{apartment_id}/status")
def set_apartment_status(
    apartment_id: str,
    payload: StatusUpdate,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return apartments.set_status(db, apartment_id, current, payload.status)


@app.delete("/apartments/{apartment_id}")
def delete_apartment(
    apartment_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    apartments.delete_apartment(db, apartment_id, current)
    return {"deleted": True}


# ------------------------
# Offers
# ------------------------
@app.post("/offers", response_model=OfferOut, status_code=201)
def submit_offer(
    payload: OfferCreate,
    current: CurrentUser = Depends(require_roles("tenant")),
    db: Database = Depends(get_db),
):
    return offers.submit_offer(
        db,
        current,
        apartment_id=payload.apartment_id,
        offer_type=payload.offer_type,
        bid_amount=payload.bid_amount,
        move_in_date=payload.move_in_date,
        duration=payload.duration,
        message=payload.message,
    )


@app.get("/offers/apartment/{apartment_id}", response_model=List[OfferOut])
def apartment_offers(
    apartment_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return offers.list_offers_for_apartment(db, current, apartment_id)


@app.get("/offers/user", response_model=List[OfferOut])
def my_offers(
    apartment_id: Optional[str] = None,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return offers.list_offers_for_tenant(db, current, apartment_id)


@app.get("/offers/{offer_id}", response_model=OfferOut)
def get_offer(
    offer_id: str,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return offers.get_offer(db, current, offer_id)


@app.put("/offers/{offer_id}", response_model=OfferOut)
def answer_offer(
    offer_id: str,
    payload: OfferDecision,
    current: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return offers.update_offer_status(db, current, offer_id, payload.status)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
