"""
Car catalogue.

`available` is owned by the booking ledger; admin edits never set it
directly. Changing `quantity` moves `available` by the same delta so the
units held by outstanding bookings stay accounted for.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from database import serialize_doc, to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import Car, CarUpdate

logger = logging.getLogger(__name__)

# Demo catalogue, inserted when the car collection is empty
SAMPLE_CARS = [
    {
        "name": "Apex GT-R",
        "model": "Nissan GT-R Nismo",
        "image": "https://images.unsplash.com/photo-1619767886558-efdc259cde1b?q=80&w=1600&auto=format&fit=crop",
        "description": "Twin-turbo coupe for a weekend on open roads.",
        "pricePerHour": 45.0,
        "quantity": 2,
        "category": "coupe",
        "transmission": "automatic",
        "seats": 4,
        "features": ["GPS", "Bluetooth", "Launch control"],
    },
    {
        "name": "Volt S",
        "model": "Tesla Model S Plaid",
        "image": "https://images.unsplash.com/photo-1549923746-c502d488b3ea?q=80&w=1600&auto=format&fit=crop",
        "description": "All-electric sedan with autopilot.",
        "pricePerHour": 38.0,
        "quantity": 3,
        "category": "sedan",
        "transmission": "automatic",
        "seats": 5,
        "features": ["Autopilot", "Heated seats", "Supercharging"],
    },
    {
        "name": "Trailhawk X",
        "model": "Jeep Grand Cherokee",
        "image": "https://images.unsplash.com/photo-1549921296-3cc26d0e3d36?q=80&w=1600&auto=format&fit=crop",
        "description": "Seven-seat hybrid SUV for family trips.",
        "pricePerHour": 25.0,
        "quantity": 4,
        "category": "suv",
        "transmission": "automatic",
        "seats": 7,
        "features": ["4x4", "Roof rack", "Third row"],
    },
]


def ensure_seed(db) -> int:
    if db["car"].count_documents({}) > 0:
        return 0
    now = utcnow()
    docs = [dict(car, available=car["quantity"], createdAt=now, updatedAt=now) for car in SAMPLE_CARS]
    db["car"].insert_many(docs)
    logger.info("Seeded %d sample cars", len(docs))
    return len(docs)


def list_cars(
    db,
    q: Optional[str] = None,
    category: Optional[str] = None,
    transmission: Optional[str] = None,
    seats: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    available_only: bool = False,
    sort: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {}
    if q:
        filt["$or"] = [
            {"name": {"$regex": q, "$options": "i"}},
            {"model": {"$regex": q, "$options": "i"}},
            {"category": {"$regex": q, "$options": "i"}},
        ]
    if category:
        filt["category"] = category
    if transmission:
        filt["transmission"] = transmission
    if seats:
        filt["seats"] = seats
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        filt["pricePerHour"] = price_cond
    if available_only:
        filt["available"] = {"$gt": 0}

    cursor = db["car"].find(filt)
    if sort == "price_asc":
        cursor = cursor.sort([("pricePerHour", 1)])
    elif sort == "price_desc":
        cursor = cursor.sort([("pricePerHour", -1)])
    elif sort == "name":
        cursor = cursor.sort([("name", 1)])
    return [serialize_doc(d) for d in cursor.limit(limit)]


def get_car(db, car_id: str) -> Dict[str, Any]:
    oid = to_object_id(car_id)
    if oid is None:
        raise ValidationError("Invalid car id")
    doc = db["car"].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Car not found")
    return serialize_doc(doc)


def create_car(db, car: Car) -> Dict[str, Any]:
    doc = car.model_dump(by_alias=True)
    if doc["available"] is None:
        doc["available"] = car.quantity
    elif doc["available"] > car.quantity:
        raise ValidationError("Available units cannot exceed quantity")
    now = utcnow()
    doc.update(createdAt=now, updatedAt=now)
    db["car"].insert_one(doc)
    logger.info("Car %s added with %d units", doc["_id"], car.quantity)
    return serialize_doc(doc)


def update_car(db, car_id: str, changes: CarUpdate) -> Dict[str, Any]:
    oid = to_object_id(car_id)
    if oid is None:
        raise ValidationError("Invalid car id")
    car = db["car"].find_one({"_id": oid})
    if not car:
        raise NotFoundError("Car not found")

    fields = changes.model_dump(by_alias=True, exclude_none=True)
    filt = {"_id": oid}
    if "quantity" in fields:
        outstanding = car["quantity"] - car["available"]
        if fields["quantity"] < outstanding:
            raise ValidationError(f"Quantity cannot drop below the {outstanding} units currently booked")
        fields["available"] = fields["quantity"] - outstanding
        # only apply if no booking touched the counters since we read them
        filt.update(quantity=car["quantity"], available=car["available"])
    fields["updatedAt"] = utcnow()

    updated = db["car"].find_one_and_update(filt, {"$set": fields}, return_document=ReturnDocument.AFTER)
    if updated is None:
        raise ConflictError("Car was booked while you were editing it, please try again")
    return serialize_doc(updated)


def delete_car(db, car_id: str) -> None:
    oid = to_object_id(car_id)
    if oid is None:
        raise ValidationError("Invalid car id")
    result = db["car"].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundError("Car not found")
    logger.info("Car %s deleted", car_id)
