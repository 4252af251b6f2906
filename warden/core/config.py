import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Database connection URL (async), used by request handlers
SQLALCHEMY_DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./data.db")

# Synchronous URL for the audit sink; audit rows are written as each check happens
AUDIT_DATABASE_URL: str = os.environ.get("AUDIT_DATABASE_URL", "sqlite:///./audit.db")

# Allow requests from this origin
ALLOW_ORIGIN: Optional[str] = os.environ.get("ALLOW_ORIGIN")

# If true, enable docs and openapi.json endpoints
ENABLE_DOCS: bool = os.environ.get("ENABLE_DOCS") == "1"

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

# "reject" refuses write payloads with non-permitted attributes, "strip" drops them
PAYLOAD_MODE: str = os.environ.get("PAYLOAD_MODE", "reject")

NOTIFICATION_WORKERS: int = int(os.environ.get("NOTIFICATION_WORKERS", "4"))
NOTIFICATION_MAX_ATTEMPTS: int = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "3"))
NOTIFICATION_RETRY_BACKOFF: float = float(os.environ.get("NOTIFICATION_RETRY_BACKOFF", "0.5"))
# Exhausted deliveries kept for inspection; older ones are dropped
NOTIFICATION_FAILED_HISTORY: int = int(os.environ.get("NOTIFICATION_FAILED_HISTORY", "100"))

# "package.module:callable" returning the Authorizer served by warden.main
AUTHORIZER_FACTORY: Optional[str] = os.environ.get("AUTHORIZER_FACTORY")
