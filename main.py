import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
import database
from database import create_document, ensure_indexes, get_db, now_utc, to_str_id
from items import router as items_router
from ledger import level_for_points
from schemas import User
from security import AuthedUser, get_current_user, get_password_hash, token_for, verify_password
from swaps import router as swaps_router
from users import router as users_router

config.configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL is not set; database routes will return 503")
    yield
    if database.client is not None:
        database.client.close()


# App setup
app = FastAPI(title="ReWear API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=False,  # We use Bearer tokens, not cookie credentials
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=600,
)

app.include_router(items_router)
app.include_router(swaps_router)
app.include_router(users_router)


# Error handling
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Auth
class RegisterBody(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileBody(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)


class ChangePasswordBody(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


def account_view(doc: dict) -> dict:
    user = to_str_id(doc)
    user.pop("password_hash", None)
    user.pop("rating_sum", None)
    return user


def auth_response(doc: dict) -> dict:
    return {"access_token": token_for(doc), "token_type": "bearer", "user": account_view(doc)}


@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_db)):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
        email=email,
        password_hash=get_password_hash(body.password),
        points=config.WELCOME_POINTS,
        level=level_for_points(config.WELCOME_POINTS),
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    logger.info("Registered user %s", user_id)
    return auth_response(db["user"].find_one({"_id": ObjectId(user_id)}))


@app.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    doc = db["user"].find_one({"email": body.email.lower()})
    if not doc or not verify_password(body.password, doc.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not doc.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return auth_response(doc)


@app.get("/auth/me")
def me(user: AuthedUser = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = db["user"].find_one({"_id": ObjectId(user.id)})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": account_view(doc)}


@app.put("/auth/profile")
def update_profile(body: ProfileBody, user: AuthedUser = Depends(get_current_user), db: Database = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    changes["updated_at"] = now_utc()
    db["user"].update_one({"_id": ObjectId(user.id)}, {"$set": changes})
    return {"user": account_view(db["user"].find_one({"_id": ObjectId(user.id)}))}


@app.put("/auth/change-password")
def change_password(body: ChangePasswordBody, user: AuthedUser = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = db["user"].find_one({"_id": ObjectId(user.id)})
    if not doc or not verify_password(body.current_password, doc.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"password_hash": get_password_hash(body.new_password), "updated_at": now_utc()}},
    )
    return {"message": "Password updated successfully"}


# Service
@app.get("/")
def read_root():
    return {"message": "ReWear API is running"}


@app.get("/health")
def health():
    return {"status": "ok", "database": database.db is not None}


DIAGNOSED_COLLECTIONS = ("user", "item", "swap")


@app.get("/test")
def test_database(db: Optional[Database] = Depends(database.get_optional_db)):
    response = {
        "backend": "running",
        "database": "not configured",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "database_name": None,
        "collections": {},
    }
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        existing = set(db.list_collection_names())
        response["collections"] = {
            name: db[name].count_documents({}) if name in existing else None
            for name in DIAGNOSED_COLLECTIONS
        }
        response["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Database diagnostics failed: %s", e)
        response["database"] = f"error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
