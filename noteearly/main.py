from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pathlib import Path
from dotenv import load_dotenv
import logging
import os

# Load environment variables - explicitly look next to the package first
package_dir = Path(__file__).parent
load_dotenv(dotenv_path=package_dir / ".env")
load_dotenv()

from noteearly.database import IS_SERVERLESS, init_db
from noteearly.errors import AppError
from noteearly.routes import router as progress_router
from noteearly.utils import error_response

# Set up logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create tables at startup (skip in serverless unless asked - filesystem is read-only)
CREATE_TABLES = os.getenv("CREATE_TABLES", "0" if IS_SERVERLESS else "1") == "1"
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup"""
    if CREATE_TABLES:
        try:
            init_db()
            logger.info("Database tables ready")
        except Exception as e:
            logger.warning(f"Could not create database tables: {e}")
    yield


app = FastAPI(
    title="NoteEarly Progress API",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Enable CORS for frontend connection
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.message))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query"))
        messages.append(f"{field}: {error['msg']}" if field else error["msg"])
    logger.warning(f"Validation Error ({request.method} {request.url.path}): {messages}")
    return JSONResponse(
        status_code=400,
        content=error_response("Validation Error: " + ", ".join(messages)),
    )


app.include_router(progress_router)


# Test endpoint to verify connectivity
@app.get("/api/test")
def test_connection():
    return {"status": "ok", "message": "Backend is running"}
