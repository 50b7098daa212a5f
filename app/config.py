"""Central configuration for the SPH assistant.

A typed Settings object (Pydantic BaseSettings) is used for dependency
injection in the API and services. A few module-level constants remain for
code paths that only need a path or a flag.
"""

from dotenv import load_dotenv, find_dotenv
import os
from typing import List, Optional

from pydantic_settings import BaseSettings

# Load environment variables once for the whole app
load_dotenv(find_dotenv())


def _sanitize_llm_base() -> None:
    base = os.getenv("LLM_API_URL", "").strip()
    if not base:
        os.environ.pop("LLM_API_URL", None)
        return
    if not (base.startswith("http://") or base.startswith("https://")):
        base = "https://" + base
    os.environ["LLM_API_URL"] = base


_sanitize_llm_base()


# Paths
PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))  # repo root
DATA_DIR = os.path.join(PROJECT_ROOT, ".data")


class Settings(BaseSettings):
    """Runtime settings for the API and services.

    Values are loaded from environment variables and optional .env files.
    """

    APP_NAME: str = "SPH Assistant API"
    APP_VERSION: str = "1.0.0"
    ENV: str = "dev"

    # Completion service (OpenAI-compatible chat endpoint)
    LLM_API_URL: Optional[str] = None
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "telkom-ai"
    LLM_TEMPERATURE: float = 0.1
    LLM_MAX_TOKENS: int = 2000
    LLM_TIMEOUT_SECONDS: float = 30.0

    # Storage
    DATABASE_PATH: str = os.path.join(DATA_DIR, "sph.sqlite3")
    UPLOADS_DIR: str = os.path.join(PROJECT_ROOT, "uploads")

    # Links embedded in chat replies
    FRONTEND_URL: str = "http://localhost:3000"
    PUBLIC_BASE_URL: str = "http://localhost:3001"

    # Letterhead
    COMPANY_NAME: str = "PT. Your Company"
    COMPANY_ADDRESS: str = "Alamat Perusahaan"

    # WhatsApp bridge
    WA_INIT_TIMEOUT: float = 60.0
    WA_BRIDGE_URL: str = "http://localhost:3100"
    WA_BRIDGE_SECRET: Optional[str] = None
    WA_CALLBACK_URL: str = "http://localhost:3001/api/whatsapp/bridge/events"
    WA_SESSION_ID: str = "agent-ai-whatsapp"
    WA_CONNECT_ON_STARTUP: bool = False

    # Live status stream keep-alive
    SSE_PING_INTERVAL: float = 30.0

    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:3001",
    ]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()

# Validity printed on every quotation
QUOTE_VALIDITY_DAYS = int(os.getenv("QUOTE_VALIDITY_DAYS", "14"))

# Seed a default admin on first start (owner fallback for the messaging channel)
SEED_DEFAULT_ADMIN = os.getenv("SEED_DEFAULT_ADMIN", "1").lower() not in {"0", "false", "no"}

# Emit one JSON access-log line per request
ENABLE_ACCESS_LOG = os.getenv("ENABLE_ACCESS_LOG", "1").lower() not in {"0", "false", "no"}
