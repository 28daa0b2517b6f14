"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in the database.
Model name lowercased is the collection name.
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(IntEnum):
    STANDARD = 0
    ADMIN = 1


class CartLine(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: ObjectId = Field(..., description="Product reference")
    quantity: int = Field(1, ge=1)
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Added-at timestamp")


class User(BaseModel):
    email: EmailStr = Field(..., description="Email address, unique")
    password: str = Field(..., description="BCrypt hashed password")
    name: str = Field(..., max_length=100)
    lastname: str = Field(..., max_length=100)
    role: Role = Role.STANDARD
    token: Optional[str] = Field(None, description="Current session token")
    cart: List[CartLine] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)


class Brand(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class Product(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=100000)
    price: float = Field(..., ge=0)
    brand: ObjectId
    category: ObjectId
    stock: int = Field(0, ge=0, description="Quantity in stock")
    sizes: List[str] = Field(default_factory=list)
    shipping: bool = False
    available: bool = True
    sold: int = Field(0, ge=0)
    publish: bool = True
    images: List[Dict[str, Any]] = Field(default_factory=list)
