"""
Database service layer for the FastAPI application.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import (
    Column, Integer, MetaData, Numeric, String, Table,
    delete, insert, select, text, update
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from api.config import APIConfig
from api.merge import build_patch_statement
from api.models import BookCreate, BookResponse, BookUpdate, UserResponse

logger = structlog.get_logger(__name__)

metadata = MetaData()

books = Table(
    "books",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("author", String(255), nullable=False),
    Column("genre", String(100), nullable=False),
    Column("price", Numeric(10, 2, asdecimal=False), nullable=False),
    Column("stock", Integer, nullable=False),
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
)


class DuplicateEmailError(Exception):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str):
        super().__init__(f"Email already registered: {email}")
        self.email = email


def create_database_engine(config: APIConfig) -> AsyncEngine:
    """Create the pooled async engine described by the configuration."""
    return create_async_engine(
        config.database_url,
        echo=config.database_echo,
        pool_pre_ping=True,
    )


class APIDatabaseService:
    """Database service for API operations."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.books = books
        self.users = users

    async def create_tables(self) -> None:
        """Create the books and users tables if they do not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
            logger.info("Database tables ready", tables=sorted(metadata.tables))
        except Exception as e:
            logger.error("Failed to create tables", error=str(e))
            raise

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()

    # Books

    async def list_books(self) -> List[BookResponse]:
        """
        Get every book ordered by id.

        Returns:
            List of BookResponse, ascending by id
        """
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(select(self.books).order_by(self.books.c.id.asc()))
                rows = result.mappings().all()
            return [BookResponse(**row) for row in rows]
        except Exception as e:
            logger.error("Failed to list books", error=str(e))
            raise

    async def get_book_by_id(self, book_id: int) -> Optional[BookResponse]:
        """
        Get a single book by ID.

        Args:
            book_id: Book identifier

        Returns:
            BookResponse if found, None otherwise
        """
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(select(self.books).where(self.books.c.id == book_id))
                row = result.mappings().first()
            return BookResponse(**row) if row else None
        except Exception as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise

    async def create_book(self, book: BookCreate) -> BookResponse:
        """
        Insert a book and return it with its generated id.

        Args:
            book: Fields of the new book

        Returns:
            The stored BookResponse
        """
        try:
            stmt = insert(self.books).values(**book.model_dump()).returning(*self.books.c)
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                row = result.mappings().one()
            logger.debug("Inserted book", book_id=row["id"], title=row["title"])
            return BookResponse(**row)
        except Exception as e:
            logger.error("Failed to create book", title=book.title, error=str(e))
            raise

    async def replace_book(self, book_id: int, book: BookUpdate) -> Optional[BookResponse]:
        """
        Overwrite every field of a book.

        Args:
            book_id: Book identifier
            book: Complete set of new field values

        Returns:
            Updated BookResponse, or None if the id does not exist
        """
        try:
            stmt = (
                update(self.books)
                .where(self.books.c.id == book_id)
                .values(**book.model_dump())
                .returning(*self.books.c)
            )
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                row = result.mappings().first()
            return BookResponse(**row) if row else None
        except Exception as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise

    async def patch_book(self, book_id: int, fields: Dict[str, Any]) -> Optional[BookResponse]:
        """
        Update only the given fields of a book in one statement.

        Args:
            book_id: Book identifier
            fields: Column name to value, as produced by collect_update_fields

        Returns:
            Updated BookResponse, or None if the id does not exist
        """
        try:
            stmt = build_patch_statement(self.books, book_id, fields)
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                row = result.mappings().first()
            return BookResponse(**row) if row else None
        except Exception as e:
            logger.error("Failed to patch book", book_id=book_id, fields=sorted(fields), error=str(e))
            raise

    async def delete_book(self, book_id: int) -> bool:
        """
        Delete a book.

        Returns:
            True if a row was removed, False if the id does not exist
        """
        try:
            stmt = delete(self.books).where(self.books.c.id == book_id).returning(self.books.c.id)
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                deleted = result.first()
            return deleted is not None
        except Exception as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise

    # Users

    async def list_users(self) -> List[UserResponse]:
        """Get every registered user without password hashes."""
        try:
            stmt = select(self.users.c.id, self.users.c.email).order_by(self.users.c.id.asc())
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.mappings().all()
            return [UserResponse(**row) for row in rows]
        except Exception as e:
            logger.error("Failed to list users", error=str(e))
            raise

    async def create_user(self, email: str, hashed_password: str) -> None:
        """
        Store a new user.

        Args:
            email: Unique email address
            hashed_password: bcrypt hash of the password

        Raises:
            DuplicateEmailError: If the email is already registered
        """
        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(self.users).values(email=email, password=hashed_password))
        except IntegrityError as e:
            logger.info("Duplicate registration rejected", email=email)
            raise DuplicateEmailError(email) from e
        except Exception as e:
            logger.error("Failed to create user", email=email, error=str(e))
            raise

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Look up a user including the password hash, for login.

        Returns:
            Dict with id, email and password, or None
        """
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(select(self.users).where(self.users.c.email == email))
                row = result.mappings().first()
            return dict(row) if row else None
        except Exception as e:
            logger.error("Failed to get user by email", email=email, error=str(e))
            raise

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy"}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
