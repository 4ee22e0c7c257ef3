import smtplib
from datetime import timedelta

import bcrypt
import pytest

import accounts
import mailer
from database import utcnow


def register(client, email="jane@gmail.com", password="Abc12345!", name="Jane", **extra):
    return client.post("/api/auth/register", json=dict(name=name, email=email, password=password, **extra))


def issued_code(db, email="jane@gmail.com", otp_type="registration"):
    return db["otp"].find_one({"email": email, "type": otp_type})["otp"]


def test_register_issues_otp(client, db):
    resp = register(client, email="Jane@Gmail.com")

    assert resp.status_code == 200
    assert resp.json()["email"] == "jane@gmail.com"
    otp = db["otp"].find_one({"email": "jane@gmail.com"})
    assert otp["type"] == "registration"
    assert len(otp["otp"]) == 6 and otp["otp"].isdigit()
    assert otp["userData"]["name"] == "Jane"
    assert otp["userData"]["password"] != "Abc12345!"
    assert otp["expiresAt"] > utcnow() + timedelta(minutes=9)
    assert db["user"].count_documents({}) == 0


@pytest.mark.parametrize("field,value,message", [
    ("name", "J", "Name must be between 2 and 50 characters"),
    ("password", "Ab1!", "Password must be at least 8 characters long"),
    ("password", "abcdefg1!", "Password must contain at least one uppercase letter, one lowercase letter, one number, and one special character"),
    ("phone", "12ab", "Please provide a valid phone number"),
])
def test_register_validation(client, db, field, value, message):
    resp = register(client, **{field: value})
    assert resp.status_code == 400
    assert resp.json()["message"] == message
    assert db["otp"].count_documents({}) == 0


def test_register_rejects_bad_email(client, db):
    resp = register(client, email="not-an-email")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Please provide a valid email address"
    assert db["otp"].count_documents({}) == 0


def test_register_existing_user(client, db, make_user):
    make_user(email="jane@gmail.com")
    resp = register(client)
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already exists with this email"
    assert db["otp"].count_documents({}) == 0


def test_register_twice_while_otp_outstanding(client, db):
    assert register(client).status_code == 200
    resp = register(client)
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("OTP already sent")
    assert db["otp"].count_documents({}) == 1


def test_register_after_otp_expired(client, db):
    register(client)
    db["otp"].update_many({}, {"$set": {"expiresAt": utcnow() - timedelta(minutes=1)}})
    assert register(client).status_code == 200


def test_verify_otp_creates_user_once(client, db):
    register(client, phone="+1 (555) 010-0100")
    code = issued_code(db)

    resp = client.post("/api/auth/verify-otp", json={"email": "jane@gmail.com", "otp": code})

    assert resp.status_code == 201
    user = resp.json()["user"]
    assert user["name"] == "Jane"
    assert user["role"] == "user"
    assert user["phone"] == "+1 (555) 010-0100"
    assert "password" not in user
    assert db["user"].count_documents({"email": "jane@gmail.com"}) == 1
    assert db["otp"].count_documents({}) == 0

    again = client.post("/api/auth/verify-otp", json={"email": "jane@gmail.com", "otp": code})
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired OTP"
    assert db["user"].count_documents({}) == 1


def test_verify_wrong_code(client, db):
    register(client)
    code = issued_code(db)
    wrong = "100000" if code != "100000" else "100001"
    resp = client.post("/api/auth/verify-otp", json={"email": "jane@gmail.com", "otp": wrong})
    assert resp.status_code == 400
    assert db["otp"].count_documents({}) == 1


def test_verify_expired_code(client, db):
    register(client)
    code = issued_code(db)
    db["otp"].update_many({}, {"$set": {"expiresAt": utcnow() - timedelta(seconds=1)}})

    resp = client.post("/api/auth/verify-otp", json={"email": "jane@gmail.com", "otp": code})

    assert resp.status_code == 400
    assert db["user"].count_documents({}) == 0


def test_login(client, db):
    register(client)
    client.post("/api/auth/verify-otp", json={"email": "jane@gmail.com", "otp": issued_code(db)})

    ok = client.post("/api/auth/login", json={"email": "jane@gmail.com", "password": "Abc12345!"})
    assert ok.status_code == 200
    assert ok.json()["user"]["status"] == "active"

    bad = client.post("/api/auth/login", json={"email": "jane@gmail.com", "password": "Wrong123!"})
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid password"


def test_login_suspended(client, make_user):
    make_user(status="suspended")
    resp = client.post("/api/auth/login", json={"email": "jane@gmail.com", "password": "Abc12345!"})
    assert resp.status_code == 400
    assert "not active" in resp.json()["message"]


def test_password_reset_flow(client, db, make_user):
    make_user()
    resp = client.post("/api/auth/forgot-password", json={"email": "jane@gmail.com"})
    assert resp.status_code == 200
    code = issued_code(db, otp_type="password_reset")

    again = client.post("/api/auth/forgot-password", json={"email": "jane@gmail.com"})
    assert again.status_code == 400

    weak = client.post("/api/auth/reset-password", json={"email": "jane@gmail.com", "otp": code, "newPassword": "short"})
    assert weak.status_code == 400
    assert db["otp"].count_documents({}) == 1

    done = client.post("/api/auth/reset-password", json={"email": "jane@gmail.com", "otp": code, "newPassword": "Xyz98765$"})
    assert done.status_code == 200
    assert db["otp"].count_documents({}) == 0

    assert client.post("/api/auth/login", json={"email": "jane@gmail.com", "password": "Xyz98765$"}).status_code == 200
    assert client.post("/api/auth/login", json={"email": "jane@gmail.com", "password": "Abc12345!"}).status_code == 400


def test_forgot_password_unknown_email(client, db):
    resp = client.post("/api/auth/forgot-password", json={"email": "ghost@gmail.com"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No account found with this email address"
    assert db["otp"].count_documents({}) == 0


def test_registration_code_cannot_reset_password(client, db):
    register(client)
    code = issued_code(db)
    resp = client.post("/api/auth/reset-password", json={"email": "jane@gmail.com", "otp": code, "newPassword": "Xyz98765$"})
    assert resp.status_code == 400


def test_mail_failure_discards_otp(client, db, monkeypatch):
    monkeypatch.setenv("USE_TEST_EMAIL", "false")

    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(mailer.smtplib, "SMTP", refuse)

    resp = register(client)

    assert resp.status_code == 500
    assert resp.json()["message"] == "Failed to send OTP. Please try again."
    assert db["otp"].count_documents({}) == 0


def test_purge_expired_otps(client, db):
    register(client)
    register(client, email="bob@gmail.com", name="Bob")
    db["otp"].update_one({"email": "bob@gmail.com"}, {"$set": {"expiresAt": utcnow() - timedelta(minutes=5)}})

    assert accounts.purge_expired_otps(db) == 1
    assert db["otp"].count_documents({}) == 1

    resp = client.get("/api/auth/cleanup")
    assert resp.json()["message"] == "Cleaned up 0 expired OTPs"


def test_password_hash_roundtrip():
    hashed = accounts.hash_password("Abc12345!")
    assert hashed.startswith("$2b$")
    assert accounts.verify_password("Abc12345!", hashed)
    assert not accounts.verify_password("abc12345!", hashed)
    assert not accounts.verify_password("Abc12345!", "plaintext")


def test_otp_message_contains_code():
    msg = mailer.build_otp_message("jane@gmail.com", "123456", "password_reset")
    assert msg["Subject"] == "RentCar - Password Reset OTP"
    assert "123456" in msg.get_body(preferencelist=("html",)).get_content()


def test_stored_password_is_bcrypt(client, db):
    register(client)
    pending = db["otp"].find_one({"email": "jane@gmail.com"})
    assert bcrypt.checkpw(b"Abc12345!", pending["userData"]["password"].encode())


def test_long_passwords_hash_on_their_first_72_bytes():
    password = "Abc12345!" + "x" * 100
    hashed = accounts.hash_password(password)
    assert accounts.verify_password(password, hashed)
    assert accounts.verify_password(password[:72], hashed)


@pytest.mark.parametrize("path,body", [
    ("/api/auth/verify-otp", {"email": "jane", "otp": "123456"}),
    ("/api/auth/forgot-password", {"email": "jane@"}),
    ("/api/auth/register", {"name": "Jane", "password": "Abc12345!"}),
])
def test_bad_email_uses_friendly_message(client, path, body):
    resp = client.post(path, json=body)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Please provide a valid email address"
