"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BookCreate(BaseModel):
    """Payload for creating a book or fully replacing one."""
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    price: float = Field(..., description="Unit price")
    stock: int = Field(..., description="Units in stock")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Dune",
                "author": "Herbert",
                "genre": "SciFi",
                "price": 9.99,
                "stock": 5
            }
        }
    )


class BookUpdate(BookCreate):
    """Payload for a full update (PUT); every field is required."""


class BookPatch(BaseModel):
    """Payload for a partial update (PATCH); any subset of fields."""
    title: Optional[str] = Field(None, description="Book title")
    author: Optional[str] = Field(None, description="Book author")
    genre: Optional[str] = Field(None, description="Book genre")
    price: Optional[float] = Field(None, description="Unit price")
    stock: Optional[int] = Field(None, description="Units in stock")


class BookResponse(BaseModel):
    """Book response model for API."""
    id: int = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field(..., description="Book genre")
    price: float = Field(..., description="Unit price")
    stock: int = Field(..., description="Units in stock")

    model_config = ConfigDict(from_attributes=True)


class UserCredentials(BaseModel):
    """Email/password pair used by registration and login."""
    email: Optional[str] = Field(None, description="User email address")
    password: Optional[str] = Field(None, description="User password")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "reader@example.com",
                "password": "myPassword123"
            }
        }
    )


class UserResponse(BaseModel):
    """Registered user, without the password hash."""
    id: int = Field(..., description="Unique user identifier")
    email: str = Field(..., description="User email address")

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    """Login response carrying the signed bearer token."""
    token: str = Field(..., description="Signed bearer token, valid for one hour")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
