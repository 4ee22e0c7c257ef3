"""
Booking ledger and the car inventory it draws on.

A car's `available` counter is only changed here: one unit is taken with a
conditional decrement when a booking is created and given back when the
booking is cancelled. Status changes follow TRANSITIONS and are written as a
compare-and-set on the previous status, so a booking releases its unit at
most once.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ReturnDocument

from database import serialize_doc, to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import Booking

logger = logging.getLogger(__name__)

DRIVER_RATE_PER_HOUR = 200.0

TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "cancelled": set(),
    "completed": set(),
}


def parse_slot(day: str, clock: str) -> datetime:
    try:
        return datetime.strptime(f"{day} {clock}", "%Y-%m-%d %H:%M")
    except ValueError:
        raise ValidationError("Invalid date or time. Use YYYY-MM-DD and HH:MM")


def rental_hours(booking: Booking) -> int:
    """Whole hours between pickup and return, rounded up."""
    start = parse_slot(booking.start_date, booking.start_time)
    end = parse_slot(booking.end_date, booking.end_time)
    if end <= start:
        raise ValidationError("Return must be after pickup")
    return math.ceil((end - start).total_seconds() / 3600)


def quote_total(price_per_hour: float, hours: int, need_driver: bool) -> float:
    total = hours * price_per_hour
    if need_driver:
        total += hours * DRIVER_RATE_PER_HOUR
    return round(total, 2)


def reserve_unit(db, car_oid) -> Optional[Dict[str, Any]]:
    """Take one unit of a car. Returns the updated car, or None if none was free."""
    return db["car"].find_one_and_update(
        {"_id": car_oid, "available": {"$gt": 0}},
        {"$inc": {"available": -1}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def release_unit(db, car_id: str) -> bool:
    car_oid = to_object_id(car_id)
    if car_oid is None:
        return False
    # never push available past quantity
    result = db["car"].update_one(
        {"_id": car_oid, "$expr": {"$lt": ["$available", "$quantity"]}},
        {"$inc": {"available": 1}, "$set": {"updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        logger.warning("Car %s is missing or has no booked units, unit not released", car_id)
        return False
    return True


def create_booking(db, booking: Booking) -> Dict[str, Any]:
    if booking.need_driver and not (booking.driver_contact or "").strip():
        raise ValidationError("Driver contact is required when a driver is requested")
    hours = rental_hours(booking)

    user_oid = to_object_id(booking.user_id)
    if user_oid is None:
        raise ValidationError("Invalid user id")
    car_oid = to_object_id(booking.car_id)
    if car_oid is None:
        raise ValidationError("Invalid car id")

    if db["user"].find_one({"_id": user_oid}, {"_id": 1}) is None:
        raise NotFoundError("User not found")
    car = db["car"].find_one({"_id": car_oid})
    if not car:
        raise NotFoundError("Car not found")

    total = quote_total(float(car["pricePerHour"]), hours, booking.need_driver)
    if abs(total - booking.total_amount) > 0.01:
        raise ValidationError("Total amount does not match the quoted price")

    if reserve_unit(db, car_oid) is None:
        logger.info("Booking rejected, car %s has no free units", booking.car_id)
        raise ConflictError("Car is not available for booking")

    doc = booking.model_dump(by_alias=True)
    doc["userId"] = str(user_oid)
    doc["carId"] = str(car_oid)
    now = utcnow()
    doc.update(status="pending", totalAmount=total, createdAt=now, updatedAt=now)
    if not booking.need_driver:
        doc["driverContact"] = None
    try:
        db["booking"].insert_one(doc)
    except Exception:
        release_unit(db, doc["carId"])
        raise
    logger.info("Booking %s created for car %s by user %s", doc["_id"], doc["carId"], doc["userId"])
    return serialize_doc(doc)


def update_booking_status(db, booking_id: str, status: str) -> Dict[str, Any]:
    oid = to_object_id(booking_id)
    if oid is None:
        raise ValidationError("Invalid booking id")
    booking = db["booking"].find_one({"_id": oid})
    if not booking:
        raise NotFoundError("Booking not found")

    current = booking.get("status", "pending")
    if status not in TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot change booking status from {current} to {status}")

    updated = db["booking"].find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": {"status": status, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Booking was changed by another request, please reload")

    if status == "cancelled":
        try:
            release_unit(db, updated["carId"])
        except Exception:
            logger.exception("Booking %s cancelled but car %s unit was not released", booking_id, updated["carId"])
            raise
    logger.info("Booking %s moved from %s to %s", booking_id, current, status)
    return serialize_doc(updated)


def _index_by_id(collection, ids: Iterable[str], projection=None) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
    if not oids:
        return {}
    found = {}
    for doc in collection.find({"_id": {"$in": oids}}, projection):
        key = str(doc["_id"])
        found[key] = serialize_doc(doc)
    return found


def _populate(booking: Dict[str, Any], cars: Dict[str, Any], users: Dict[str, Any]) -> Dict[str, Any]:
    doc = serialize_doc(booking)
    doc["car"] = cars.get(doc.get("carId"))
    doc["user"] = users.get(doc.get("userId"))
    return doc


def list_bookings(db, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {}
    if user_id:
        user_oid = to_object_id(user_id)
        filt["userId"] = str(user_oid) if user_oid is not None else user_id
    bookings = list(db["booking"].find(filt).sort([("createdAt", -1)]))
    cars = _index_by_id(db["car"], {b.get("carId") for b in bookings})
    users = _index_by_id(db["user"], {b.get("userId") for b in bookings}, {"password": 0})
    return [_populate(b, cars, users) for b in bookings]


def get_booking(db, booking_id: str) -> Dict[str, Any]:
    oid = to_object_id(booking_id)
    if oid is None:
        raise ValidationError("Invalid booking id")
    booking = db["booking"].find_one({"_id": oid})
    if not booking:
        raise NotFoundError("Booking not found")
    cars = _index_by_id(db["car"], [booking.get("carId")])
    users = _index_by_id(db["user"], [booking.get("userId")], {"password": 0})
    return _populate(booking, cars, users)
