"""
Database Schemas for the E-commerce catalog

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
Field names are camelCase on the wire and in stored documents; reference
fields hold the string id of a document in another collection.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class Product(Document):
    description: Optional[str] = None
    image: Optional[str] = None
    pricing: Optional[float] = None
    shipping_cost: Optional[float] = None


class User(Document):
    email: str
    password: str
    username: Optional[str] = None
    purchase_history: List[Any] = Field(default_factory=list)
    shipping_address: Optional[str] = None


class Comment(Document):
    product: str
    user: str
    rating: Optional[float] = None
    images: List[str] = Field(default_factory=list)
    text: Optional[str] = None


class Cart(Document):
    products: List[str] = Field(default_factory=list)
    quantities: List[int] = Field(default_factory=list)  # paired with products by index
    user: str


class OrderLine(Document):
    product: str
    quantity: int = 1
    price: Optional[float] = None


class Order(Document):
    user: str
    products: List[OrderLine] = Field(default_factory=list)
    total_amount: Optional[float] = None
    shipping_address: Optional[str] = None
    order_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = "Pending"
