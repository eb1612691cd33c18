"""
Apartment listings.

Status is a free field: any manager may set any status at any time, and
nothing else is updated when it changes.
"""
import logging
import re
from typing import Any, Dict, Optional

from pymongo.database import Database

from database import create_document, serialize, to_object_id, utcnow
from errors import ListingNotFound, NotAuthorized
from schemas import Apartment

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "rent", "bedrooms")


def can_manage(listing: Dict[str, Any], user) -> bool:
    return user.role == "admin" or listing.get("owner_id") == user.id


def get_apartment(database: Database, apartment_id: str) -> Dict[str, Any]:
    oid = to_object_id(apartment_id)
    doc = database["apartment"].find_one({"_id": oid}) if oid else None
    if doc is None:
        raise ListingNotFound()
    return serialize(doc)


def _get_managed(database: Database, apartment_id: str, user) -> Dict[str, Any]:
    listing = get_apartment(database, apartment_id)
    if not can_manage(listing, user):
        raise NotAuthorized("Only the owner can manage this listing")
    return listing


def create_apartment(database: Database, owner, payload: Apartment) -> Dict[str, Any]:
    data = payload.model_dump()
    data["owner_id"] = owner.id
    data["bid_accepted"] = False
    apartment_id = create_document(database, "apartment", data)
    logger.info("Apartment %s created by %s", apartment_id, owner.username)
    return get_apartment(database, apartment_id)


def list_apartments(
    database: Database,
    status: Optional[str] = None,
    location: Optional[str] = None,
    min_rent: Optional[float] = None,
    max_rent: Optional[float] = None,
    bedrooms: Optional[int] = None,
    owner_id: Optional[str] = None,
    sort_by: str = "created_at",
    sort_dir: str = "desc",
    page: int = 1,
    page_size: int = 10,
) -> Dict[str, Any]:
    filter_: Dict[str, Any] = {}
    if status:
        filter_["status"] = status
    if location:
        filter_["location"] = {"$regex": re.escape(location), "$options": "i"}
    if min_rent is not None or max_rent is not None:
        rent_cond: Dict[str, Any] = {}
        if min_rent is not None:
            rent_cond["$gte"] = min_rent
        if max_rent is not None:
            rent_cond["$lte"] = max_rent
        filter_["rent"] = rent_cond
    if bedrooms is not None:
        filter_["bedrooms"] = {"$gte": bedrooms}
    if owner_id:
        filter_["owner_id"] = owner_id

    total = database["apartment"].count_documents(filter_)
    sort_dir_num = -1 if sort_dir == "desc" else 1
    cursor = (
        database["apartment"]
        .find(filter_)
        .sort(sort_by, sort_dir_num)
        .skip((page - 1) * page_size)
        .limit(page_size)
    )
    items = [serialize(doc) for doc in cursor]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


def update_apartment(database: Database, apartment_id: str, user, payload: Apartment) -> Dict[str, Any]:
    listing = _get_managed(database, apartment_id, user)
    data = payload.model_dump()
    data["updated_at"] = utcnow()
    database["apartment"].update_one({"_id": to_object_id(listing["id"])}, {"$set": data})
    logger.info("Apartment %s updated by %s", apartment_id, user.username)
    return get_apartment(database, apartment_id)


def set_status(database: Database, apartment_id: str, user, status: str) -> Dict[str, Any]:
    listing = _get_managed(database, apartment_id, user)
    database["apartment"].update_one(
        {"_id": to_object_id(listing["id"])},
        {"$set": {"status": status, "updated_at": utcnow()}},
    )
    logger.info("Apartment %s status %s -> %s", apartment_id, listing.get("status"), status)
    return get_apartment(database, apartment_id)


def delete_apartment(database: Database, apartment_id: str, user) -> None:
    listing = _get_managed(database, apartment_id, user)
    database["apartment"].delete_one({"_id": to_object_id(listing["id"])})
    logger.info("Apartment %s deleted by %s", apartment_id, user.username)
