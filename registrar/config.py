import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "registrar")
# Multi-document transactions need a replica set; standalone servers run without them.
MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS", "true")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

TERM_ROLLOVER_ENABLED = _flag("TERM_ROLLOVER_ENABLED", "true")

LOG_LEVEL = os.getenv("REGISTRAR_LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
