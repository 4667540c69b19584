from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import uuid

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from database import Database
from errors import ApiError
from models.subscriptions import PlanGatingError
from routes import auth, documents, subscriptions, users
from services.container import build_services
from utils.responses import failure, success

HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    429: "rate_limited",
}


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting document platform API")
    if os.environ.get("PYTEST_RUNNING"):
        # Tests install their own container on app.state
        yield
        return

    database = Database()
    await database.connect()
    services = build_services(database.get_db())
    app.state.services = services

    logger.info(f"Stripe mode: {services.billing.mode}")
    if not services.llm.api_key:
        logger.error("LLM_API_KEY is not set. Generation and analysis will fail.")
    if not services.esignature.configured:
        logger.warning("PANDADOC_API_KEY is not set. E-signature sending is disabled.")

    yield

    # Shutdown
    logger.info("Shutting down document platform API")
    await database.close()


# Create FastAPI app
app = FastAPI(
    title="Document Platform API",
    description="AI document generation, analysis, editing and signing",
    version="1.0.0",
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
app.include_router(auth.router)
app.include_router(documents.router)
app.include_router(subscriptions.router)
app.include_router(users.router)


# Health check
@app.get("/api/health")
async def health_check():
    return success({
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "production")
    })


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message} {exc.details or ''}")
        return JSONResponse(status_code=exc.status_code, content=failure(exc.message, exc.code))
    return JSONResponse(status_code=exc.status_code, content=failure(exc.message, exc.code, exc.details))


@app.exception_handler(PlanGatingError)
async def plan_gating_handler(request: Request, exc: PlanGatingError):
    return JSONResponse(
        status_code=403,
        content=failure(exc.message, "plan_required", {
            "feature": exc.feature,
            "current_plan": exc.current_plan,
            "required_plan": exc.required_plan,
        }),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "error")
    return JSONResponse(status_code=exc.status_code, content=failure(str(exc.detail), code))


# Validation errors are reported as 400 with the failing fields
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg")}
        for e in exc.errors()
    ]
    logger.warning(f"Validation failed request_id={request_id} path={request.url.path} errors={errors}")
    return JSONResponse(
        status_code=400,
        content=failure("Invalid request data", "validation_error", errors),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=failure("Internal server error", "internal_error")
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
