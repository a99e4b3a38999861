"""Request bodies for the public and admin API.

Fields are optional at the schema level; presence and business rules are
checked by the services so every failure carries the same error messages
whichever client sent the request.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    phone_number: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None
    referral_code: Optional[str] = None

    @field_validator('name', 'username', 'phone_number', 'referral_code')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if isinstance(v, str) else v


class LoginRequest(BaseModel):
    phone_number: Optional[str] = None
    password: Optional[str] = None


class PurchaseRequest(BaseModel):
    product_id: Optional[int] = None


class RechargeRequest(BaseModel):
    amount: Optional[float] = None


class UtrRequest(BaseModel):
    utr: Optional[str] = None


class WithdrawalRequest(BaseModel):
    amount: Optional[float] = None
    method: Optional[str] = None
    bank_name: Optional[str] = None
    ifsc_code: Optional[str] = None
    account_number: Optional[str] = None
    account_holder_name: Optional[str] = None
    upi_id: Optional[str] = None


class ReferralRequest(BaseModel):
    referral_code: Optional[str] = None


class BalanceAdjustmentRequest(BaseModel):
    amount: Optional[float] = None
    reason: Optional[str] = None


class VerifyUtrRequest(BaseModel):
    utr: Optional[str] = None
    action: Optional[str] = None


class WithdrawalStatusRequest(BaseModel):
    status: Optional[str] = None


class RebateRequest(BaseModel):
    """The rebate pays out again on every call, so callers must opt in."""
    confirm: bool = False


class ProductRequest(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    daily_income: Optional[float] = None
    duration: Optional[int] = None
    total_return: Optional[float] = None
    profit: Optional[float] = None


class UserUpdateRequest(BaseModel):
    """Arbitrary keys are accepted; the service applies its own whitelist."""
    model_config = ConfigDict(extra="allow")


def compact(model: BaseModel) -> dict:
    """Request body as a dict without unset keys."""
    return model.model_dump(exclude_unset=True)
