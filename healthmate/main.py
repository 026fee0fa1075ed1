import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from healthmate.config import get_settings
from healthmate.database import SessionLocal, create_db_and_tables
from healthmate.exceptions import HealthMateError
from healthmate.pipeline import recover_interrupted_reports
from healthmate.routes import auth_router, chat_router, reports_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    recover_interrupted_reports(SessionLocal)
    logger.info("HealthMate API started (storage=%s, model=%s)", settings.storage_backend, settings.gemini_model)
    yield


app = FastAPI(
    title="HealthMate",
    description="Medical report storage with AI summaries and a follow-up chat assistant.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(message: str, error: str | None = None) -> dict:
    body = {"success": False, "message": message}
    if error and settings.is_development:
        body["error"] = error
    return body


@app.exception_handler(HealthMateError)
async def healthmate_error_handler(request: Request, exc: HealthMateError):
    cause = exc.__cause__
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (cause: %r)", request.method, request.url.path, exc.message, cause)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, str(cause) if cause else None),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"] if part not in ("body", "query"))
        errors.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": errors[0] if errors else "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", str(exc)),
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(reports_router)
app.include_router(chat_router)

if settings.storage_backend == "local":
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
