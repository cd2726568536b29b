from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["admin", "viewer"]
PaymentStatus = Literal["pending", "success", "failed"]
PaymentMethod = Literal["credit_card", "debit_card", "paypal", "bank_transfer", "crypto"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    first_name: str = Field("", max_length=64)
    last_name: str = Field("", max_length=64)


class UserCreateRequest(RegisterRequest):
    role: Role = "viewer"


class UserUpdateRequest(CamelModel):
    username: Optional[str] = Field(None, min_length=3, max_length=64)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6, max_length=72)
    first_name: Optional[str] = Field(None, max_length=64)
    last_name: Optional[str] = Field(None, max_length=64)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserOut(CamelModel):
    id: int
    username: str
    email: str
    role: str
    first_name: str
    last_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TokenResponse(CamelModel):
    token: str
    user: UserOut


class Party(CamelModel):
    name: Optional[str] = Field(None, max_length=128)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)


class PaymentCreateRequest(CamelModel):
    amount: float = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    status: PaymentStatus = "pending"
    payment_method: PaymentMethod
    sender: Optional[Party] = None
    receiver: Optional[Party] = None
    description: Optional[str] = Field(None, max_length=1000)
    failure_reason: Optional[str] = Field(None, max_length=500)


class PaymentUpdateRequest(CamelModel):
    amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    sender: Optional[Party] = None
    receiver: Optional[Party] = None
    description: Optional[str] = Field(None, max_length=1000)
    failure_reason: Optional[str] = Field(None, max_length=500)


class PaymentOut(CamelModel):
    id: int
    transaction_id: str
    amount: float
    currency: str
    status: str
    payment_method: str
    sender: Optional[Party] = None
    receiver: Optional[Party] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    owner_id: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentPage(CamelModel):
    payments: List[PaymentOut]
    total: int
    page: int
    limit: int
    total_pages: int


class DailyPoint(CamelModel):
    date: date
    transactions: int
    successful: int
    revenue: float


class PaymentStats(CamelModel):
    today_transactions: int
    week_transactions: int
    total_revenue: float
    today_revenue: float
    failed_transactions: int
    total_transactions: int
    status_breakdown: Dict[str, int]
    status_amounts: Dict[str, float]
    method_breakdown: Dict[str, int]
    method_amounts: Dict[str, float]
    daily: Optional[List[DailyPoint]] = None


class HealthResponse(BaseModel):
    status: str
    database: str
    version: str


class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None
