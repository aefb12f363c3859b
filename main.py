import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from db import SessionLocal, init_db
from feed import prune_changes
from models import utcnow
from auth import router as auth_router
from patients import router as patients_router
from health import router as health_router
from reminders import router as reminders_router
from alerts import router as alerts_router
from plans import router as billing_router
from realtime import router as realtime_router

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "CareEase"
APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {APP_NAME} API ({settings.environment})")
    init_db()
    with SessionLocal() as db:
        prune_changes(db, utcnow() - timedelta(days=settings.change_retention_days))
        db.commit()
    yield
    logger.info(f"Shutting down {APP_NAME} API")


# App and middleware
app = FastAPI(
    title=f"{APP_NAME} API",
    version=APP_VERSION,
    description="Patient care coordination for caregivers and families",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(patients_router)
app.include_router(health_router)
app.include_router(reminders_router)
app.include_router(alerts_router)
app.include_router(billing_router)
app.include_router(realtime_router)


@app.exception_handler(SQLAlchemyError)
async def backend_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Backend failure on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "The request could not be completed. Please try again."},
    )


@app.get("/health", tags=["meta"])
def health_check():
    return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=settings.environment == "development")
