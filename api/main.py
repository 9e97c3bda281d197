"""
FastAPI main application for the Bookstore Inventory API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import (
    TokenManager, dummy_password_hash, hash_password, verify_password,
    verify_token, verify_write_access
)
from api.config import APIConfig
from api.database import APIDatabaseService, DuplicateEmailError, create_database_engine
from api.merge import collect_update_fields, parse_patch
from api.middleware import RequestLoggingMiddleware
from api.models import (
    BookCreate, BookResponse, BookUpdate,
    ErrorResponse, HealthResponse, TokenResponse, UserCredentials, UserResponse
)

# Setup logging
logger = structlog.get_logger(__name__)

WELCOME_MESSAGE = "Welcome to the Bookstore Inventory Management System!"

API_USAGE = """
## Features

* **Books**: list, read, create, replace, partially update and delete books
* **Users**: register with email and password, log in for a bearer token

## Authentication

Adding a book requires a token obtained from `/login`:

```
Authorization: Bearer your_token_here
```
"""

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    app_config: APIConfig = app.state.config
    logger.info("Starting Bookstore Inventory API")
    if app_config.uses_default_jwt_secret:
        logger.warning(
            "JWT_SECRET is not set; tokens are signed with the insecure default secret"
        )

    engine = create_database_engine(app_config)
    db_service = APIDatabaseService(engine)
    try:
        if app_config.create_tables:
            await db_service.create_tables()
        logger.info(
            "Database connection established",
            database=engine.url.render_as_string(hide_password=True)
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await db_service.dispose()
        raise

    app.state.db_service = db_service

    yield

    logger.info("Shutting down Bookstore Inventory API")
    app.state.db_service = None
    await db_service.dispose()


def get_config(request: Request) -> APIConfig:
    """Configuration the application was built with."""
    return request.app.state.config


def get_db_service(request: Request) -> APIDatabaseService:
    """Store service owned by the running application."""
    db_service = getattr(request.app.state, "db_service", None)
    if db_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return db_service


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            status_code=exc.status_code
        ).model_dump(),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 Bad Request."""
    problems = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="Invalid request",
            detail="; ".join(problems),
            status_code=status.HTTP_400_BAD_REQUEST
        ).model_dump()
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if request.app.state.config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


@router.get("/", response_class=PlainTextResponse, tags=["Root"])
async def root():
    """Welcome message."""
    return WELCOME_MESSAGE


# Health check endpoint (no authentication required)
@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    app_config: APIConfig = request.app.state.config
    db_service = getattr(request.app.state, "db_service", None)
    try:
        db_status = "unavailable"
        if db_service:
            health_info = await db_service.health_check()
            db_status = health_info.get("status", "unknown")

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=app_config.api_version,
            database_status=db_status
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(
            status="unhealthy",
            timestamp=datetime.now(timezone.utc),
            version=app_config.api_version,
            database_status="unhealthy"
        )


# Books endpoints
@router.get("/books", response_model=List[BookResponse], tags=["Books"])
async def get_books(db_service: APIDatabaseService = Depends(get_db_service)):
    """Get every book, ordered by id."""
    try:
        return await db_service.list_books()
    except Exception as e:
        logger.error("Failed to get books", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error getting books."
        )


@router.get("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(
    book_id: int,
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Get a single book by ID.

    - **book_id**: Book identifier
    """
    try:
        book = await db_service.get_book_by_id(book_id)
    except Exception as e:
        logger.error("Failed to get book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Cannot find specific book"
        )

    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return book


@router.post(
    "/books",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Books"]
)
async def create_book(
    book: BookCreate,
    claims: Dict = Depends(verify_token),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Add a book. Requires a bearer token.

    - **title**, **author**, **genre**, **price**, **stock**: all required
    """
    try:
        created = await db_service.create_book(book)
    except Exception as e:
        logger.error("Failed to create book", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error creating book."
        )

    logger.info("Book created", book_id=created.id, user_id=claims.get("userId"))
    return created


@router.put("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def update_book(
    book_id: int,
    book: BookUpdate,
    claims: Optional[Dict] = Depends(verify_write_access),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Replace every field of a book."""
    try:
        updated = await db_service.replace_book(book_id, book)
    except Exception as e:
        logger.error("Failed to update book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error updating book."
        )

    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return updated


@router.patch("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def patch_book(
    book_id: int,
    body: Dict[str, Any] = Body(..., examples=[{"stock": 3}]),
    claims: Optional[Dict] = Depends(verify_write_access),
    app_config: APIConfig = Depends(get_config),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Update some fields of a book.

    With the default ``truthy`` field filter, falsy values such as
    ``stock: 0``, ``price: ""`` or ``title: false`` are ignored just like
    omitted fields.
    """
    try:
        patch = parse_patch(body, app_config.patch_field_filter)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    fields = collect_update_fields(patch, app_config.patch_field_filter)
    if not fields:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )

    try:
        updated = await db_service.patch_book(book_id, fields)
    except Exception as e:
        logger.error("Failed to patch book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating book"
        )

    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return updated


@router.delete("/books/{book_id}", response_class=PlainTextResponse, tags=["Books"])
async def delete_book(
    book_id: int,
    claims: Optional[Dict] = Depends(verify_write_access),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Delete a book by ID."""
    try:
        deleted = await db_service.delete_book(book_id)
    except Exception as e:
        logger.error("Failed to delete book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Cannot delete specific book"
        )

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return "Book deleted successfully"


# User endpoints
@router.get("/register", response_model=List[UserResponse], tags=["Users"])
async def get_users(db_service: APIDatabaseService = Depends(get_db_service)):
    """List registered users (ids and emails only)."""
    try:
        return await db_service.list_users()
    except Exception as e:
        logger.error("Failed to get users", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error getting users."
        )


@router.post(
    "/register",
    response_class=PlainTextResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Users"]
)
async def register(
    credentials: UserCredentials,
    app_config: APIConfig = Depends(get_config),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """Register a user with an email and password."""
    if not credentials.email or not credentials.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password are required"
        )

    try:
        hashed_password = await run_in_threadpool(
            hash_password, credentials.password, app_config.bcrypt_rounds
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    try:
        await db_service.create_user(credentials.email, hashed_password)
    except DuplicateEmailError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )
    except Exception as e:
        logger.error("Failed to register user", email=credentials.email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error registering user."
        )

    logger.info("User registered", email=credentials.email)
    return "User registered successfully"


@router.post("/login", response_model=TokenResponse, tags=["Users"])
async def login(
    request: Request,
    credentials: UserCredentials,
    app_config: APIConfig = Depends(get_config),
    db_service: APIDatabaseService = Depends(get_db_service)
):
    """
    Exchange an email and password for a bearer token.

    Unknown emails and wrong passwords get the same response, and both
    go through a bcrypt check.
    """
    invalid_credentials = HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Invalid credentials"
    )
    if not credentials.email or not credentials.password:
        raise invalid_credentials

    try:
        user = await db_service.get_user_by_email(credentials.email)
    except Exception as e:
        logger.error("Failed to look up user", email=credentials.email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server Error: Error logging in."
        )

    if user is not None:
        hashed_password = user["password"]
    else:
        hashed_password = await run_in_threadpool(
            dummy_password_hash, app_config.bcrypt_rounds
        )
    password_ok = await run_in_threadpool(
        verify_password, credentials.password, hashed_password
    )
    if user is None or not password_ok:
        logger.info("Login rejected", email=credentials.email)
        raise invalid_credentials

    token_manager: TokenManager = request.app.state.token_manager
    logger.info("User logged in", user_id=user["id"])
    return TokenResponse(token=token_manager.create_access_token(user["id"]))


def create_app(app_config: Optional[APIConfig] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        app_config: Settings to run with; read from the environment if omitted

    Returns:
        Configured FastAPI application
    """
    app_config = app_config or APIConfig()

    app = FastAPI(
        title=app_config.api_title,
        description=f"{app_config.api_description}\n{API_USAGE}",
        version=app_config.api_version,
        lifespan=lifespan
    )
    app.state.config = app_config
    app.state.db_service = None
    app.state.token_manager = TokenManager(
        secret=app_config.jwt_secret,
        algorithm=app_config.jwt_algorithm,
        expire_minutes=app_config.access_token_expire_minutes
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.cors_origins,
        allow_credentials=app_config.cors_allow_credentials,
        allow_methods=app_config.cors_allow_methods,
        allow_headers=app_config.cors_allow_headers,
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)
    return app


# Create FastAPI application
app = create_app()
