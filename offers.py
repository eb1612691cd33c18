"""
Tenant offers on apartment listings.

An offer is created `pending` and answered once by the listing's owner.
Status changes are conditional single-document updates on `status ==
"pending"`, so two concurrent answers cannot both succeed.

What happens to the other offers on accept is set by OFFER_ACCEPT_POLICY:
`manual` leaves them for the owner, `auto_reject` rejects every other
pending offer on the listing and refuses a second acceptance.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo.database import Database

import config
from apartments import can_manage, get_apartment
from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import InvalidTransition, NotAuthorized, OfferNotFound, ValidationError
from schemas import Offer

logger = logging.getLogger(__name__)

ANSWERS = ("accepted", "rejected")


def minimum_bid(rent: float, ratio: Optional[float] = None) -> Decimal:
    # Exact decimal product; 999.99 * 0.8 is 799.992, not a float that rounds below it
    ratio = config.MIN_BID_RATIO if ratio is None else ratio
    return Decimal(str(rent)) * Decimal(str(ratio))


def validate_offer(
    rent: float,
    offer_type: str,
    bid_amount: Optional[float],
    move_in_date: date,
    duration: int,
    today: Optional[date] = None,
) -> float:
    """Check an offer against a listing's rent and return the amount to record.

    Fixed-price offers always record the rent, whatever amount was sent.
    """
    today = today or datetime.now(timezone.utc).date()
    if move_in_date <= today:
        raise ValidationError("Move-in date must be in the future")
    if not 1 <= duration <= 60:
        raise ValidationError("Duration must be between 1 and 60 months")
    if offer_type == "fixed":
        return rent
    if offer_type != "bidding":
        raise ValidationError(f"Unknown offer type: {offer_type}")
    if bid_amount is None:
        raise ValidationError("Bid amount is required")
    floor = minimum_bid(rent)
    if Decimal(str(bid_amount)) < floor:
        raise ValidationError(f"Bid must be at least {floor.normalize():f}")
    return bid_amount


def _out(doc: Dict[str, Any]) -> Dict[str, Any]:
    # Dates are stored as midnight datetimes
    if isinstance(doc.get("move_in_date"), datetime):
        doc["move_in_date"] = doc["move_in_date"].date()
    return doc


def _get_offer_doc(database: Database, offer_id: str) -> Dict[str, Any]:
    oid = to_object_id(offer_id)
    doc = database["offer"].find_one({"_id": oid}) if oid else None
    if doc is None:
        raise OfferNotFound()
    return serialize(doc)


def submit_offer(
    database: Database,
    tenant,
    apartment_id: str,
    offer_type: str,
    bid_amount: Optional[float],
    move_in_date: date,
    duration: int,
    message: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    listing = get_apartment(database, apartment_id)
    if listing.get("status") != "available":
        raise ValidationError("Listing is not available")
    amount = validate_offer(listing["rent"], offer_type, bid_amount, move_in_date, duration, today)

    offer = Offer(
        apartment_id=listing["id"],
        tenant_id=tenant.id,
        bid_amount=amount,
        offer_type=offer_type,
        move_in_date=datetime.combine(move_in_date, datetime.min.time()),
        duration=duration,
        message=message,
    )
    offer_id = create_document(database, "offer", offer.model_dump())
    logger.info("Offer %s (%s, %s) submitted by %s on %s", offer_id, offer_type, amount, tenant.username, listing["id"])
    return _out(_get_offer_doc(database, offer_id))


def list_offers_for_apartment(database: Database, user, apartment_id: str) -> List[Dict[str, Any]]:
    listing = get_apartment(database, apartment_id)
    if not can_manage(listing, user):
        raise NotAuthorized("Only the owner can view offers on this listing")
    docs = get_documents(database, "offer", {"apartment_id": listing["id"]}, sort=[("created_at", -1)])
    return [_out(d) for d in docs]


def list_offers_for_tenant(database: Database, user, apartment_id: Optional[str] = None) -> List[Dict[str, Any]]:
    filter_: Dict[str, Any] = {"tenant_id": user.id}
    if apartment_id:
        filter_["apartment_id"] = apartment_id
    docs = get_documents(database, "offer", filter_, sort=[("created_at", -1)])
    return [_out(d) for d in docs]


def get_offer(database: Database, user, offer_id: str) -> Dict[str, Any]:
    offer = _get_offer_doc(database, offer_id)
    if offer["tenant_id"] != user.id and user.role != "admin":
        listing = get_apartment(database, offer["apartment_id"])
        if listing.get("owner_id") != user.id:
            raise NotAuthorized("Not authorized to view this offer")
    return _out(offer)


def update_offer_status(
    database: Database,
    user,
    offer_id: str,
    new_status: str,
    policy: Optional[str] = None,
) -> Dict[str, Any]:
    policy = config.accept_policy(policy or config.OFFER_ACCEPT_POLICY)
    if new_status not in ANSWERS:
        raise ValidationError("Status must be accepted or rejected")

    offer = _get_offer_doc(database, offer_id)
    listing = get_apartment(database, offer["apartment_id"])
    if not can_manage(listing, user):
        raise NotAuthorized("Only the listing owner can answer this offer")
    if offer["status"] != "pending":
        raise InvalidTransition(f"Offer is already {offer['status']}")
    if new_status == "accepted" and policy == "auto_reject" and listing.get("bid_accepted"):
        raise InvalidTransition("Another offer on this listing was already accepted")

    now = utcnow()
    result = database["offer"].update_one(
        {"_id": to_object_id(offer["id"]), "status": "pending"},
        {"$set": {"status": new_status, "updated_at": now}},
    )
    if result.matched_count == 0:
        raise InvalidTransition()
    logger.info("Offer %s %s by %s", offer["id"], new_status, user.username)

    if new_status == "accepted":
        database["apartment"].update_one(
            {"_id": to_object_id(listing["id"])},
            {"$set": {"bid_accepted": True, "updated_at": now}},
        )
        if policy == "auto_reject":
            rejected = database["offer"].update_many(
                {"apartment_id": listing["id"], "status": "pending"},
                {"$set": {"status": "rejected", "updated_at": now}},
            )
            logger.info("Auto-rejected %d pending offers on %s", rejected.modified_count, listing["id"])

    return _out(_get_offer_doc(database, offer_id))
