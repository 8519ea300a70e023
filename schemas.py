"""
Database Schemas for the Real Estate Marketplace

Each Pydantic model represents a document stored in MongoDB. Collection
names live in ``database`` (e.g. Offer -> "makeOffer"). References between
documents (agent_email, propertyId, offerId) are plain strings.
"""
from typing import Optional, Literal
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

Role = Literal["user", "agent", "admin"]
PropertyStatus = Literal["pending", "verified", "reject"]
OfferStatus = Literal["pending", "accepted", "rejected", "bought"]

# -----------------------------
# Core domain models
# -----------------------------

class User(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    photoURL: Optional[str] = None
    phone: Optional[str] = None
    role: Role = "user"
    status: Literal["normal", "fraud"] = "normal"
    created_at: Optional[datetime] = None
    last_log_in: Optional[datetime] = None

class Property(BaseModel):
    title: str
    location: str
    image: Optional[str] = None
    description: Optional[str] = None
    agent_name: Optional[str] = None
    agent_email: EmailStr
    agent_image: Optional[str] = None
    minPrice: float = Field(..., ge=0)
    maxPrice: float = Field(..., ge=0)
    status: PropertyStatus = "pending"
    isAdvertised: bool = False
    advertisedAt: Optional[datetime] = None

class WishlistEntry(BaseModel):
    propertyId: str = Field(..., description="Property _id as string")
    userEmail: EmailStr
    title: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    agent_name: Optional[str] = None
    agent_email: Optional[EmailStr] = None
    minPrice: Optional[float] = None
    maxPrice: Optional[float] = None

class Offer(BaseModel):
    propertyId: str = Field(..., description="Property _id as string")
    title: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    agent_name: Optional[str] = None
    agent_email: Optional[EmailStr] = None
    buyerEmail: EmailStr
    buyerName: str
    offerAmount: float = Field(..., gt=0)
    buyingDate: Optional[str] = None
    status: OfferStatus = "pending"
    transaction_Id: Optional[str] = None
    decisionAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None

class Review(BaseModel):
    propertyId: str = Field(..., description="Property _id as string")
    title: Optional[str] = None
    agent_name: Optional[str] = None
    reviewer_email: Optional[EmailStr] = None
    reviewer_name: Optional[str] = None
    reviewer_image: Optional[str] = None
    comment: str
    rating: Optional[int] = Field(None, ge=1, le=5)
    createdAt: Optional[datetime] = None

class Payment(BaseModel):
    transaction_Id: str
    offerId: str
    propertyId: str
    title: Optional[str] = None
    agent_name: Optional[str] = None
    buyerEmail: EmailStr
    buyerName: Optional[str] = None
    offerAmount: float
    paidAt: datetime

# Simple schema exposure for tooling
class SchemaInfo(BaseModel):
    name: str
    fields: dict


def get_schema_definitions():
    return [
        SchemaInfo(name="users", fields=User.model_json_schema()),
        SchemaInfo(name="properties", fields=Property.model_json_schema()),
        SchemaInfo(name="wishlist", fields=WishlistEntry.model_json_schema()),
        SchemaInfo(name="makeOffer", fields=Offer.model_json_schema()),
        SchemaInfo(name="reviews", fields=Review.model_json_schema()),
        SchemaInfo(name="payments", fields=Payment.model_json_schema()),
    ]
