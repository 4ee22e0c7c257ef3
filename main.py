import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import bookings
import cars
from database import db, create_document, ensure_indexes, serialize_doc, to_object_id
from errors import RentalError
from schemas import Booking, BookingStatusUpdate, Car, CarUpdate, Notification, UserRole, UserUpdate

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("rentcar")

DEFAULT_ADMIN_EMAIL = "Admin123@gmail.com"
DEFAULT_ADMIN_PASSWORD = "Admin@1234"


# Background OTP cleanup, owned by the app lifecycle
otp_sweeper: Optional[asyncio.Task] = None


async def sweep_expired_otps(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(accounts.purge_expired_otps, require_db())
        except Exception:
            logger.exception("Error cleaning up expired OTPs")


def bootstrap(database) -> None:
    ensure_indexes(database)
    accounts.ensure_admin(
        database,
        os.getenv("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL),
        os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD),
        os.getenv("ADMIN_NAME", "Admin"),
    )
    if os.getenv("SEED_SAMPLE_CARS", "true").lower() != "false":
        cars.ensure_seed(database)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global otp_sweeper
    if db is None:
        logger.warning("DATABASE_URL not set, running without a database")
    else:
        bootstrap(db)
        interval = float(os.getenv("OTP_SWEEP_INTERVAL_SECONDS", 300))
        if interval > 0:
            otp_sweeper = asyncio.create_task(sweep_expired_otps(interval))
    yield
    if otp_sweeper is not None:
        otp_sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await otp_sweeper
        otp_sweeper = None


app = FastAPI(title="RentCar API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping: the frontend shows `message` to the user verbatim
@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


def validation_message(error: dict) -> str:
    loc = [str(p) for p in error.get("loc", ()) if p != "body"]
    field = ".".join(loc)
    if loc and loc[-1] == "email":
        return "Please provide a valid email address"
    if error.get("type") == "missing":
        return f"{field} is required" if field else "Invalid request"
    msg = error.get("msg", "Invalid request")
    return f"{field}: {msg}" if field else msg


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = validation_message(errors[0]) if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": str(exc)})


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


# Health + DB test
@app.get("/")
def read_root():
    return {"message": "RentCar Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected & Working",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name if db is not None else None,
        "collections": []
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# Auth endpoints
class RegisterIn(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    role: UserRole = "user"


class VerifyOtpIn(BaseModel):
    email: EmailStr
    otp: str


class LoginIn(BaseModel):
    email: str
    password: str


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    email: EmailStr
    otp: str
    new_password: str = Field(..., alias="newPassword")


@app.post("/api/auth/register")
def register(payload: RegisterIn):
    email = accounts.register(
        require_db(), payload.name, payload.email, payload.password, payload.phone, payload.role
    )
    return {"message": "OTP sent to your email. Please verify to complete registration.", "email": email}


@app.post("/api/auth/verify-otp", status_code=201)
def verify_otp(payload: VerifyOtpIn):
    return {"user": accounts.verify_otp(require_db(), payload.email, payload.otp)}


@app.post("/api/auth/login")
def login(payload: LoginIn):
    return {"user": accounts.login(require_db(), payload.email, payload.password)}


@app.post("/api/auth/forgot-password")
def forgot_password(payload: ForgotPasswordIn):
    email = accounts.forgot_password(require_db(), payload.email)
    return {
        "message": "Password reset OTP sent to your email. Please verify to reset your password.",
        "email": email,
    }


@app.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordIn):
    accounts.reset_password(require_db(), payload.email, payload.otp, payload.new_password)
    return {"message": "Password reset successfully. You can now log in with your new password."}


@app.get("/api/auth/cleanup")
def cleanup_otps():
    deleted = accounts.purge_expired_otps(require_db())
    return {"message": f"Cleaned up {deleted} expired OTPs"}


# Cars endpoints
@app.get("/api/cars")
def list_cars(
    q: Optional[str] = None,
    category: Optional[str] = None,
    transmission: Optional[str] = None,
    seats: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    available_only: bool = False,
    sort: Optional[str] = Query("popular", description="popular|price_asc|price_desc|name"),
    limit: int = 50,
):
    if db is None:
        return []
    return cars.list_cars(
        db,
        q=q,
        category=category,
        transmission=transmission,
        seats=seats,
        min_price=min_price,
        max_price=max_price,
        available_only=available_only,
        sort=sort,
        limit=limit,
    )


@app.get("/api/cars/{car_id}")
def get_car(car_id: str):
    return cars.get_car(require_db(), car_id)


@app.post("/api/cars", status_code=201)
def create_car(payload: Car):
    return cars.create_car(require_db(), payload)


@app.put("/api/cars/{car_id}")
def update_car(car_id: str, payload: CarUpdate):
    return cars.update_car(require_db(), car_id, payload)


@app.delete("/api/cars/{car_id}")
def delete_car(car_id: str):
    cars.delete_car(require_db(), car_id)
    return {"message": "Car deleted successfully"}


# Booking endpoints
class BookingIn(Booking):
    pass


@app.post("/api/bookings", status_code=201)
def create_booking(payload: BookingIn):
    return bookings.create_booking(require_db(), payload)


@app.get("/api/bookings")
def list_bookings():
    return bookings.list_bookings(require_db())


@app.get("/api/bookings/user/{user_id}")
def list_user_bookings(user_id: str):
    return bookings.list_bookings(require_db(), user_id=user_id)


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str):
    return bookings.get_booking(require_db(), booking_id)


@app.put("/api/bookings/{booking_id}")
def update_booking(booking_id: str, payload: BookingStatusUpdate):
    return bookings.update_booking_status(require_db(), booking_id, payload.status)


# Users
@app.get("/api/users")
def list_users():
    return [serialize_doc(d) for d in require_db()["user"].find({}, {"password": 0})]


@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate):
    return accounts.update_user(require_db(), user_id, payload.model_dump(by_alias=True))


# Notifications
@app.get("/api/notifications/{user_id}")
def list_notifications(user_id: str):
    cursor = require_db()["notification"].find({"userId": user_id}).sort([("createdAt", -1)])
    return [serialize_doc(d) for d in cursor]


@app.post("/api/notifications", status_code=201)
def create_notification(payload: Notification):
    database = require_db()
    notification_id = create_document("notification", payload)
    return serialize_doc(database["notification"].find_one({"_id": to_object_id(notification_id)}))


@app.put("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str):
    oid = to_object_id(notification_id)
    if oid is None:
        raise HTTPException(status_code=400, detail="Invalid notification id")
    doc = require_db()["notification"].find_one_and_update(
        {"_id": oid}, {"$set": {"isRead": True}}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Notification not found")
    return serialize_doc(doc)


# Admin
@app.post("/api/admin/activate")
def activate_admin():
    email = os.getenv("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL).strip().lower()
    admin = require_db()["user"].find_one_and_update(
        {"email": email, "role": "admin"},
        {"$set": {"status": "active"}},
        return_document=ReturnDocument.AFTER,
    )
    if not admin:
        raise HTTPException(status_code=404, detail="Admin account not found")
    return {"message": "Admin account activated successfully", "user": accounts.public_user(admin)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
