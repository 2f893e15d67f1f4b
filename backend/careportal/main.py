import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .core.database import create_db_and_tables
from .core.init_db import init_db
from .core.settings import settings, validate_runtime_config
from .models.Account import Account # Import models to register them with SQLModel
from .models.ApprovalDecision import ApprovalDecision
from .models.Audit import AuditLog
from .models.PasswordResetToken import PasswordResetToken
from .models.RolePermission import AccountPermissionOverride, RolePermissionDocument
from .models.SessionToken import SessionToken
from .models.VerificationToken import VerificationToken

from .account.router import router as account_router
from .admin.router import router as admin_router
from .audit.router import router as audit_router
from .auth.router import router as auth_router
from .permissions.router import router as permissions_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_runtime_config()
    create_db_and_tables()
    init_db()
    yield



app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"code": "ValidationFailed", "message": "Request validation failed", "errors": errors}},
    )

@app.exception_handler(SQLAlchemyError)
async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": {"code": "StoreUnavailable", "message": "Account store is unavailable, try again later"}},
    )

app.include_router(auth_router)
app.include_router(account_router)
app.include_router(admin_router)
app.include_router(permissions_router)
app.include_router(audit_router)

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

@app.get("/health")
def health():
    return {"status": "ok"}
