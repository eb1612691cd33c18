"""
Configuration for the Rental Offers API, read from environment variables.
"""
import logging
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-me-in-production"

# manual: the owner answers every offer; auto_reject: accepting one rejects the other pending offers
ACCEPT_POLICIES = ("manual", "auto_reject")


def jwt_secret(value):
    if value == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set, tokens are signed with the built-in development secret")
    return value


def accept_policy(value):
    if value not in ACCEPT_POLICIES:
        raise ValueError(f"OFFER_ACCEPT_POLICY must be one of {', '.join(ACCEPT_POLICIES)}, got {value!r}")
    return value


# MongoDB
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Session tokens
JWT_SECRET = jwt_secret(os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET))
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRY_MINUTES = int(os.getenv("JWT_EXPIRY_MINUTES", "60"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Offers
OFFER_ACCEPT_POLICY = accept_policy(os.getenv("OFFER_ACCEPT_POLICY", "manual"))
MIN_BID_RATIO = float(os.getenv("MIN_BID_RATIO", "0.8"))

# Client
AUTH_BOOTSTRAP_TIMEOUT = float(os.getenv("AUTH_BOOTSTRAP_TIMEOUT", "5.0"))

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", "8000"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
