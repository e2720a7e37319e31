"""
Business Ops Backend - application entry point

    uvicorn server:app --host 0.0.0.0 --port 8001

.env is loaded before `database` is imported so MONGO_URL / DB_NAME apply.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from database import db, DB_NAME
from routes.documents import router as documents_router
from routes.payroll import router as payroll_router
from routes.settings import router as settings_router
from services.period_metrics import BUSINESS_TZ
from services.sequence_allocator import MAX_COLLISION_ATTEMPTS
from seed import seed_database
from utils.error_codes import ErrorCode, format_error_message

APP_NAME = "Business Ops Backend"
APP_VERSION = "1.0"

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(title=APP_NAME, version=APP_VERSION, redirect_slashes=False)

app.include_router(documents_router)
app.include_router(payroll_router)
app.include_router(settings_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def no_store_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    payload = format_error_message(ErrorCode.GENERAL_STORE_UNAVAILABLE, type(exc).__name__)
    return JSONResponse(status_code=503, content=payload)


@app.on_event("startup")
async def startup():
    logger.info(f"{APP_NAME} {APP_VERSION}: db={DB_NAME}, tz={BUSINESS_TZ.key}, max collisions={MAX_COLLISION_ATTEMPTS}")
    result = await seed_database(db)
    logger.info(f"Seed: {result['message']}")


@app.on_event("shutdown")
async def shutdown():
    db.client.close()
    logger.info("MongoDB client closed")


@app.get("/api/health")
async def health():
    try:
        await db.command("ping")
        db_status = "ok"
    except PyMongoError as e:
        logger.warning(f"Health check ping failed: {e}")
        db_status = "unavailable"
    return {"status": "ok", "service": APP_NAME, "version": APP_VERSION, "database": db_status}
