"""
Accounts and the emailed one-time codes that gate registration and
password reset.

An OTP document is claimed with a single find-and-delete, so a code can be
used once. Lookups always filter on expiresAt; purge_expired_otps only keeps
the collection small.
"""

import logging
import re
import secrets
import smtplib
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
from pymongo.errors import DuplicateKeyError

import mailer
from database import to_object_id, utcnow
from errors import ConflictError, DeliveryError, NotFoundError, ValidationError
from schemas import Otp, PendingUser, User

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=10)
BCRYPT_ROUNDS = 10

PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")
PHONE_RE = re.compile(r"^\+?[\d\s\-\(\)]{10,}$")


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode()[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode())
    except (AttributeError, ValueError):
        # not a bcrypt hash
        return False


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def check_password(password: str) -> None:
    if not password or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not PASSWORD_RE.match(password):
        raise ValidationError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "email": doc.get("email"),
        "phone": doc.get("phone"),
        "role": doc.get("role"),
        "status": doc.get("status"),
    }


def issue_otp(db, email: str, otp_type: str, user_data: Optional[PendingUser] = None) -> str:
    code = generate_otp()
    now = utcnow()
    otp = Otp(email=email, otp=code, type=otp_type, expires_at=now + OTP_TTL, user_data=user_data)
    doc = otp.model_dump(by_alias=True)
    doc["createdAt"] = now
    result = db["otp"].insert_one(doc)
    try:
        mailer.send_otp(email, code, otp_type)
    except (smtplib.SMTPException, OSError):
        logger.exception("Could not deliver %s OTP to %s", otp_type, email)
        db["otp"].delete_one({"_id": result.inserted_id})
        raise DeliveryError("Failed to send OTP. Please try again.")
    return code


def register(db, name: str, email: str, password: str, phone: Optional[str] = None, role: str = "user") -> str:
    name = (name or "").strip()
    if len(name) < 2 or len(name) > 50:
        raise ValidationError("Name must be between 2 and 50 characters")
    check_password(password)
    phone = (phone or "").strip() or None
    if phone and not PHONE_RE.match(phone):
        raise ValidationError("Please provide a valid phone number")

    email = email.strip().lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise ConflictError("User already exists with this email")
    if db["otp"].find_one({"email": email, "expiresAt": {"$gt": utcnow()}}, {"_id": 1}):
        raise ConflictError("OTP already sent. Please check your email or wait before requesting a new one.")

    pending = PendingUser(name=name, password=hash_password(password), phone=phone, role=role)
    issue_otp(db, email, "registration", pending)
    logger.info("Registration OTP issued for %s", email)
    return email


def verify_otp(db, email: str, code: str) -> Dict[str, Any]:
    email = email.strip().lower()
    otp_doc = db["otp"].find_one_and_delete({
        "email": email,
        "otp": (code or "").strip(),
        "type": "registration",
        "expiresAt": {"$gt": utcnow()},
    })
    if not otp_doc:
        raise ValidationError("Invalid or expired OTP")

    pending = PendingUser(**(otp_doc.get("userData") or {}))
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise ConflictError("User already exists with this email")
    user = User(
        name=pending.name,
        email=email,
        password=pending.password,
        phone=pending.phone,
        role=pending.role,
        join_date=utcnow(),
    )
    doc = user.model_dump(by_alias=True)
    try:
        db["user"].insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("User already exists with this email")
    logger.info("User %s created for %s", doc["_id"], email)
    return public_user(doc)


def login(db, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user:
        raise ValidationError("User not found")
    if not verify_password(password, user.get("password", "")):
        raise ValidationError("Invalid password")
    if user.get("status") != "active":
        raise ValidationError("Your account is not active. Please contact support.")
    return public_user(user)


def forgot_password(db, email: str) -> str:
    email = email.strip().lower()
    if not db["user"].find_one({"email": email}, {"_id": 1}):
        raise ValidationError("No account found with this email address")
    outstanding = db["otp"].find_one(
        {"email": email, "type": "password_reset", "expiresAt": {"$gt": utcnow()}}, {"_id": 1}
    )
    if outstanding:
        raise ConflictError(
            "Password reset OTP already sent. Please check your email or wait before requesting a new one."
        )
    issue_otp(db, email, "password_reset")
    logger.info("Password reset OTP issued for %s", email)
    return email


def reset_password(db, email: str, code: str, new_password: str) -> None:
    check_password(new_password)
    email = email.strip().lower()
    otp_doc = db["otp"].find_one_and_delete({
        "email": email,
        "otp": (code or "").strip(),
        "type": "password_reset",
        "expiresAt": {"$gt": utcnow()},
    })
    if not otp_doc:
        raise ValidationError("Invalid or expired OTP")
    result = db["user"].update_one(
        {"email": email},
        {"$set": {"password": hash_password(new_password), "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise ValidationError("User not found")
    logger.info("Password reset for %s", email)


def purge_expired_otps(db) -> int:
    result = db["otp"].delete_many({"expiresAt": {"$lt": utcnow()}})
    if result.deleted_count:
        logger.info("Cleaned up %d expired OTPs", result.deleted_count)
    return result.deleted_count


def update_user(db, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(user_id)
    if oid is None:
        raise ValidationError("Invalid user id")
    changes = {k: v for k, v in changes.items() if v is not None}
    if changes:
        changes["updatedAt"] = utcnow()
        result = db["user"].update_one({"_id": oid}, {"$set": changes})
        if result.matched_count == 0:
            raise NotFoundError("User not found")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def ensure_admin(db, email: str, password: str, name: str = "Admin") -> bool:
    """Create the default admin account unless an admin already exists."""
    if db["user"].find_one({"role": "admin"}, {"_id": 1}):
        return False
    admin = User(
        name=name,
        email=email.strip().lower(),
        password=hash_password(password),
        role="admin",
        status="active",
        join_date=utcnow(),
    )
    db["user"].insert_one(admin.model_dump(by_alias=True))
    logger.warning("Default admin user created: %s", admin.email)
    return True
