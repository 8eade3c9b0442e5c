from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from database import database
from patentsbrowser import __version__, __product__
from patentsbrowser.routes import (
    auth_router,
    subscriptions_router,
    payments_router,
    organizations_router,
    saved_patents_router,
    admin_router,
)
from patentsbrowser.services.errors import ServiceError
from utils.responses import error_response

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.mongodb import MongoDBJobStore
from pymongo import MongoClient

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler jobs persist in MongoDB so a restart does not lose them
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
db_name = os.environ.get('DB_NAME', 'patentsbrowser')

jobstores = {}
if not os.environ.get("PYTEST_RUNNING"):
    jobstores['default'] = MongoDBJobStore(
        database=db_name,
        collection='scheduled_jobs',
        client=MongoClient(mongo_url)
    )
    logger.info(f"MongoDB job store configured: {db_name}.scheduled_jobs")

scheduler = AsyncIOScheduler(jobstores=jobstores)

from job_runner import run_subscription_expiry

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {__product__} API")
    await database.connect()

    if not os.environ.get("RAZORPAY_KEY_SECRET"):
        logger.warning("RAZORPAY_KEY_SECRET is not set. Checkout signature verification will reject every payment.")
    if not os.environ.get("OTP_PEPPER"):
        logger.warning("OTP_PEPPER is not set. OTP hashes are only salted with the email.")

    # Trial and subscription expiry every hour on the hour
    scheduler.add_job(
        run_subscription_expiry,
        CronTrigger(minute=0),
        id="subscription_expiry",
        name="Trial & Subscription Expiry",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info(f"Shutting down {__product__} API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title=f"{__product__} API",
    description="Patent research workspace: billing, organizations and saved-patent folders",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(subscriptions_router)
app.include_router(payments_router)
app.include_router(organizations_router)
app.include_router(saved_patents_router)
app.include_router(admin_router)

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": __product__,
        "version": __version__,
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Service errors carry their own status and machine code
@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.status_code, exc.message, code=exc.code),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        body = error_response(
            exc.status_code,
            detail.get("message", ""),
            code=detail.get("code"),
            data=detail.get("data"),
        )
    else:
        body = error_response(exc.status_code, str(detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    logger.warning(f"Validation failed on {request.url.path}: {[(e.get('loc'), e.get('msg')) for e in errors]}")
    return JSONResponse(
        status_code=400,
        content=error_response(400, message, code="VALIDATION_ERROR",
                               data=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response(500, "Internal server error")
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
