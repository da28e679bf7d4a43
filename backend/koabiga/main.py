import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from koabiga.core.config import settings
from koabiga.core.exceptions import PersistenceError
from koabiga.models import Base  # noqa: F401 - register models
from koabiga.routers import admin, fee_applications, fee_rules, health, payments

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Koabiga API",
    description="Agricultural cooperative fee rules and member billing",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health")
app.include_router(admin.router, prefix="/admin")
app.include_router(fee_rules.router, prefix="/fee-rules")
app.include_router(fee_applications.router, prefix="/fee-applications")
app.include_router(payments.router, prefix="/payments")


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    # Context was logged where the error was raised
    logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=500, content={"detail": exc.to_dict()})


def seed_initial_admin() -> None:
    """Create the first admin account from settings if there is none."""
    from koabiga.core.database import SessionLocal
    from koabiga.core.security import get_password_hash
    from koabiga.models.admin_user import AdminUser
    db = SessionLocal()
    try:
        if db.query(AdminUser).first() is None:
            db.add(
                AdminUser(
                    id=str(uuid.uuid4()),
                    username=settings.INITIAL_ADMIN_USERNAME,
                    hashed_password=get_password_hash(settings.INITIAL_ADMIN_PASSWORD),
                    is_active=True,
                )
            )
            db.commit()
            logger.info("Seeded initial admin %s", settings.INITIAL_ADMIN_USERNAME)
    finally:
        db.close()


@app.on_event("startup")
async def startup():
    seed_initial_admin()
