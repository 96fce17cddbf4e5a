import logging

import config  # loads apps/api/.env before anything reads os.environ

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import engine, Base
import models  # noqa: ensure all models are registered before create_all
from errors import StatementError

from routers import accounts, audit_log, bank_accounts, statements
from statement_parser import SUPPORTED_BANKS

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create all tables on startup
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Statement Import API",
    description="Bank statement upload, review and reconciliation into the general ledger",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(statements.router)
app.include_router(bank_accounts.router)
app.include_router(accounts.router)
app.include_router(audit_log.router)


@app.exception_handler(StatementError)
async def statement_error_handler(request: Request, exc: StatementError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
def health():
    return {
        "status": "ok",
        "ledger": "remote" if config.LEDGER_URL else "local",
        "supported_formats": {
            "statements": ["CSV", "Excel (.xlsx/.xls)", "PDF"],
            "banks": SUPPORTED_BANKS,
            "max_file_size": f"{config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        },
    }
