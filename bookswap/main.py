from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
import logging
from dotenv import load_dotenv
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from .api.v1.api import router as api_router
from .core.config import get_settings
from .core.exceptions import AuthRequired, BookSwapError
from .core.store import build_store

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("bookswap")

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests and scripts may install their own store before startup
    if getattr(app.state, "store", None) is None:
        app.state.store = build_store(settings)
    logger.info(
        f"Starting up: {type(app.state.store).__name__} in {settings.environment} environment"
    )

    yield

    logger.info("Shutting down")

app = FastAPI(
    title=settings.app_name,
    description="""
    API for the BookSwap book exchange.

    List books, browse what others offer, request swaps, approve, deny,
    cancel or complete them, and review books.

    ## Authentication

    Sign in through Supabase Auth and send the access token as
    `Authorization: Bearer <token>`. Browsing `/api/v1/books` works without
    a token; everything that acts on behalf of a user requires one.
    """,
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "docExpansion": "none",
    }
)

# Configure CORS
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    settings.frontend_url,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)

@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.app_name}", "environment": settings.environment}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.environment}

@app.exception_handler(BookSwapError)
async def bookswap_exception_handler(request: Request, exc: BookSwapError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthRequired) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

# Add exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "detail": jsonable_encoder(exc.errors()),
            "code": "validation_error",
            "retryable": False,
        },
    )
