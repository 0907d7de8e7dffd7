import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, field_validator

from backend.app.core.validation import sanitize_user_input


# --- Profiles ---
class ProfileRegister(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    # Referral code or nickname of the inviting affiliate (?ref=)
    referral_code: Optional[str] = None

    @field_validator("full_name", "referral_code")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=255) or None


class ProfileResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    balance: Decimal
    total_earnings: Decimal
    invoice_limit: Decimal
    invoice_due_day: int
    referred_by: Optional[uuid.UUID] = None
    referral_code: str
    nickname: Optional[str] = None


class NicknameUpdate(BaseModel):
    nickname: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")


# --- Products ---
class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    final_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    price_type: Literal["meter", "fixed"] = "fixed"

    @field_validator("name", "description")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        """Sanitize user input to prevent XSS."""
        if v is None:
            return None
        return sanitize_user_input(v, max_length=2000)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    final_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    price_type: Optional[Literal["meter", "fixed"]] = None

    @field_validator("name", "description")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=2000)


class ProductResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    description: Optional[str] = None
    final_price: Decimal
    commission_rate: Optional[Decimal] = None
    status: str
    price_type: str
    created_at: Optional[datetime] = None


class ProductApprove(BaseModel):
    commission_rate: Decimal = Field(ge=0, le=100)


class CommissionRateUpdate(BaseModel):
    commission_rate: Decimal = Field(ge=0, le=100)


# --- Orders ---
class OrderCreate(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(default=1, ge=1)
    payment_method: Literal["now", "invoice"] = "now"


class OrderStatusUpdate(BaseModel):
    status: str
    rejection_reason: Optional[str] = None

    @field_validator("rejection_reason")
    @classmethod
    def sanitize_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=1000)


# --- Withdrawals ---
class WithdrawalRequest(BaseModel):
    pix_key: str = ""

    @field_validator("pix_key")
    @classmethod
    def sanitize_pix_key(cls, v: str) -> str:
        return sanitize_user_input(v, max_length=255)


# --- Admin: users ---
class InvoiceLimitUpdate(BaseModel):
    invoice_limit: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class InvoiceDueDayUpdate(BaseModel):
    invoice_due_day: int = Field(ge=1, le=31)


# --- Payment preference proxy ---
class PaymentItem(BaseModel):
    title: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)


class PaymentPayer(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class PaymentPreferenceRequest(BaseModel):
    orderId: str
    items: List[PaymentItem] = Field(min_length=1)
    payer: PaymentPayer = PaymentPayer()
