"""
Runtime configuration for the ReWear API.

Values are read from the environment (optionally from a local .env file).
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
DATABASE_NAME = os.getenv("DATABASE_NAME", "rewear")
# Multi-document transactions need a replica set (Atlas or rs0 locally)
USE_TRANSACTIONS = os.getenv("USE_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", str(30 * 24 * 60)))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# HTTP
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
ALLOWED_ORIGINS = [
    FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
PORT = int(os.getenv("PORT", "8000"))

# Marketplace rules
WELCOME_POINTS = 10
DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 50
TRENDING_LIMIT = 10

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
