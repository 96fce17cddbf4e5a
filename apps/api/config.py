"""
Runtime configuration, read once from the environment (.env supported).
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

BASE_DIR = Path(__file__).parent.parent.parent

# ── Storage ──────────────────────────────────────────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/statements.db")
UPLOAD_DIR   = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))

# ── Upload limits ────────────────────────────────────────────────────────────

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

SUPPORTED_CONTENT_TYPES = {
    "application/pdf":                                                    ".pdf",
    "text/csv":                                                           ".csv",
    "application/csv":                                                    ".csv",
    "application/vnd.ms-excel":                                           ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet":  ".xlsx",
}
SUPPORTED_EXTENSIONS = {".pdf", ".csv", ".xls", ".xlsx"}

# ── Tenancy & ledger ─────────────────────────────────────────────────────────

DEFAULT_BUSINESS_ID  = os.getenv("DEFAULT_BUSINESS_ID", "default")
DEFAULT_BANK_GL_CODE = os.getenv("DEFAULT_BANK_GL_CODE", "1010")

LEDGER_URL     = os.getenv("LEDGER_URL", "")       # empty → post into the local ledger tables
LEDGER_API_KEY = os.getenv("LEDGER_API_KEY", "")
LEDGER_TIMEOUT = float(os.getenv("LEDGER_TIMEOUT", "10"))

# ── HTTP ─────────────────────────────────────────────────────────────────────

LOG_LEVEL    = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:4200,http://localhost:3000").split(",")
    if o.strip()
]
