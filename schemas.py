"""
Database Schemas for the Storefront Orders API

Each Pydantic model maps to a MongoDB collection (lowercased class name)
- User -> user
- Order -> order (OrderItem and Customer are embedded)

Request bodies accepted by the HTTP layer live at the bottom of the file.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator
from typing import Optional, List, Literal


class User(BaseModel):
    """Storefront account
    role: 'customer' or 'admin' (owner email is always admin)
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="bcrypt hash")
    role: Literal['customer', 'admin'] = Field('customer')
    is_active: bool = True


class OrderItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(None, alias="productId", description="Loose product reference")
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False, description="Unit price")
    qty: int = Field(1, ge=1)
    image: Optional[str] = Field(None, description="Durable URL once uploaded, else the submitted payload")


class Customer(BaseModel):
    """Contact snapshot taken when the order is placed"""
    name: str
    email: EmailStr
    phone: str
    address: str
    notes: Optional[str] = None


class Order(BaseModel):
    user_id: str = Field(..., description="Links to user._id")
    customer: Customer
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0, allow_inf_nan=False)
    status: Literal['pending', 'confirmed', 'shipped', 'cancelled'] = 'pending'


# ---------------------- Request bodies ----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator('password')
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode('utf-8')) > 72:
            raise ValueError('Password must be at most 72 bytes')
        return value


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class OrderRequest(BaseModel):
    """Order submission from the storefront.

    Identity fields (name, email, customer) are not part of the model and are
    dropped if a client sends them.
    """
    model_config = ConfigDict(extra='ignore')

    phone: str = Field(..., min_length=5)
    address: str = Field(..., min_length=5)
    notes: Optional[str] = None
    items: List[OrderItem] = Field(..., min_length=1)
    total: Optional[float] = Field(None, ge=0, allow_inf_nan=False, description="Client-declared total, informational only")


class OrderUpdate(BaseModel):
    """Admin update: only status and notes are writable"""
    model_config = ConfigDict(extra='ignore')

    status: Optional[Literal['pending', 'confirmed', 'shipped', 'cancelled']] = None
    notes: Optional[str] = None
