import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, EmailStr, Field

from config import ADMIN_EMAILS, SESSION_TTL_MIN
from database import db, now_utc, require_db
from responses import ok
from schemas import User as UserSchema

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

PBKDF2_ROUNDS = 100_000


# ----------------------- Utils -----------------------

def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    h = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS).hex()
    return f"{salt}${h}"


def verify_password(password: str, hashed: str) -> bool:
    try:
        salt, _ = hashed.split("$")
    except ValueError:
        return False
    return secrets.compare_digest(hash_password(password, salt), hashed)


def create_session(user_id) -> str:
    token = secrets.token_hex(32)
    db["session"].insert_one({
        "user": user_id,
        "token": token,
        "expires_at": now_utc() + timedelta(minutes=SESSION_TTL_MIN),
        "created_at": now_utc(),
    })
    return token


def get_user_by_token(token: Optional[str]):
    if not token:
        return None
    s = db["session"].find_one({"token": token})
    if not s:
        return None
    if s.get("expires_at") and s["expires_at"] < now_utc():
        db["session"].delete_one({"_id": s["_id"]})
        return None
    return db["user"].find_one({"_id": s["user"]})


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


async def get_current_user(authorization: Optional[str] = Header(None)):
    require_db()
    user = get_user_by_token(_bearer(authorization))
    if not user:
        raise HTTPException(status_code=401, detail="Not authorized, token missing or invalid")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")
    return user


async def optional_user(authorization: Optional[str] = Header(None)):
    require_db()
    user = get_user_by_token(_bearer(authorization))
    if user and not user.get("isActive", True):
        return None
    return user


async def admin_required(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ----------------------- Models -----------------------
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    hostel: Optional[str] = None
    room: Optional[str] = None
    whatsapp: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    bio: str = ""


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    bio: Optional[str] = Field(None, max_length=500)
    hostel: Optional[str] = None
    room: Optional[str] = None
    whatsapp: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    upiId: Optional[str] = Field(None, max_length=100)


# ----------------------- Routes -----------------------
@router.post("/register", status_code=201)
def register(payload: RegisterInput):
    require_db()
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")
    user = UserSchema(
        name=payload.name,
        email=email,
        passwordHash=hash_password(payload.password),
        phone=payload.phone,
        hostel=payload.hostel,
        room=payload.room,
        whatsapp=payload.whatsapp,
        bio=payload.bio,
        role="admin" if email in ADMIN_EMAILS else "user",
    )
    doc = user.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    res = db["user"].insert_one(doc)
    token = create_session(res.inserted_id)
    log.info("Registered user %s (role=%s)", email, doc["role"])
    return ok({"user": db["user"].find_one({"_id": res.inserted_id}), "token": token}, "User registered successfully")


@router.post("/login")
def login(payload: LoginInput):
    require_db()
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("passwordHash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")
    token = create_session(user["_id"])
    return ok({"user": user, "token": token}, "Login successful")


@router.get("/profile")
def get_profile(user=Depends(get_current_user)):
    return ok({"user": user})


@router.put("/profile")
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user)):
    update = payload.model_dump(exclude_none=True)
    if update:
        update["updated_at"] = now_utc()
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return ok({"user": db["user"].find_one({"_id": user["_id"]})}, "Profile updated successfully")
