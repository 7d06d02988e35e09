"""
Request and document schemas for the wholesale ordering API

Each document model maps to a MongoDB collection named after the lowercased
class name (e.g., Order -> "order"). Field names follow the JSON wire format
(camelCase) so documents can be returned as stored.
"""

from pydantic import BaseModel, Field, EmailStr, StrictInt, confloat
from typing import Optional, List, Dict, Literal, Union

Role = Literal["admin", "seller", "customer"]
OrderStatus = Literal["pending", "confirmed", "prepared", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "partial", "paid", "overdue"]
PaymentMethod = Literal["credit", "cash"]
PaymentRecordMethod = Literal["cash", "bank_transfer", "credit", "other"]
CreditNoteReason = Literal[
    "returned_goods", "quality_issue", "wrong_items", "damaged_goods",
    "pricing_error", "customer_complaint", "other",
]

# Strings and booleans are rejected instead of coerced, NaN and Infinity too.
Amount = Union[StrictInt, confloat(strict=True, allow_inf_nan=False)]

# ------------ Auth ------------
class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class AuthUser(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: str
    sellerId: Optional[str] = None

# ------------ Users ------------
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str
    role: Role
    businessName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    sellerId: Optional[str] = None

class UserUpdate(BaseModel):
    name: Optional[str] = None
    businessName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    isActive: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=6)

# ------------ Products ------------
class ProductCreate(BaseModel):
    name: str
    description: Optional[str] = None
    unit: str = "kg"
    price: float = Field(..., ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    isActive: bool = True

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    isActive: Optional[bool] = None

# ------------ Orders ------------
class OrderItemIn(BaseModel):
    productId: str
    name: str
    unit: str = ""
    quantity: float = Field(..., gt=0, allow_inf_nan=False)
    price: float = Field(..., ge=0, allow_inf_nan=False)

class OrderCreate(BaseModel):
    customerId: str = Field(..., min_length=1)
    sellerId: str = Field(..., min_length=1)
    items: List[OrderItemIn] = Field(..., min_length=1)
    subtotal: Amount
    deliveryFee: Optional[Amount] = None
    deliveryAddress: Optional[str] = None
    deliveryDate: Optional[str] = None
    paymentMethod: PaymentMethod = "credit"
    notes: Optional[str] = None

class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    paymentStatus: Optional[PaymentStatus] = None
    deliveryDate: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[OrderItemIn]] = Field(None, min_length=1)
    subtotal: Optional[Amount] = None
    deliveryFee: Optional[Amount] = None
    total: Optional[Amount] = None
    paymentAmount: Optional[Amount] = None
    paymentMethod: PaymentRecordMethod = "cash"
    paymentNotes: Optional[str] = None
    creditNoteAmount: Optional[Amount] = None
    creditNoteReason: CreditNoteReason = "other"
    creditNoteNotes: Optional[str] = None

class Order(BaseModel):
    customerId: str
    sellerId: str
    items: List[dict]
    status: OrderStatus = "pending"
    paymentStatus: PaymentStatus = "pending"
    paymentMethod: PaymentMethod = "credit"
    subtotal: float
    deliveryFee: float
    total: float
    totalPaid: float = 0
    totalCreditNotes: float = 0
    remainingAmount: float
    overdue: bool = False
    payments: List[dict] = []
    creditNotes: List[dict] = []
    deliveryAddress: str = ""
    deliveryDate: Optional[str] = None
    notes: str = ""

# ------------ Conversations ------------
class ConversationCreate(BaseModel):
    participantIds: List[str]
    participantRoles: Dict[str, str] = {}
    type: Literal["order", "support", "general"]
    subject: str = Field(..., min_length=1)
    orderId: Optional[str] = None
    initialMessage: Optional[str] = None

class MessageCreate(BaseModel):
    text: str
    type: Literal["text", "image", "system"] = "text"

class ConversationUpdate(BaseModel):
    status: Optional[Literal["active", "archived"]] = None
    unreadCount: Optional[int] = Field(None, ge=0)

class SellerChatRequest(BaseModel):
    initialMessage: Optional[str] = None

# ------------ Transactions ------------
class TransactionCreate(BaseModel):
    customerId: str = Field(..., min_length=1)
    amount: Amount
    type: Literal["payment", "credit_note"] = "payment"
    paymentMethod: PaymentRecordMethod
    transactionDate: str = Field(..., min_length=1)
    reference: Optional[str] = None
    notes: Optional[str] = None
    relatedOrderId: Optional[str] = None
