from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from models import GATEWAY_NOTE_LIMIT, CampaignStatus
from upi import is_valid_upi_id


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# Pledges. One variant per payment method, discriminated on paymentMethod.

class PledgeBase(CamelModel):
    donor_name: str
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=20)
    amount: float = Field(..., gt=0)
    campaign: str = Field(..., max_length=200)
    is_anonymous: bool = False
    message: Optional[str] = Field(None, max_length=GATEWAY_NOTE_LIMIT)

    @field_validator('donor_name')
    @classmethod
    def validate_name(cls, v):
        if not v:
            raise ValueError('Donor name is required')
        if len(v) < 2:
            raise ValueError('Donor name must be at least 2 characters')
        if len(v) > 100:
            raise ValueError('Donor name must be less than 100 characters')
        return v

    @field_validator('campaign')
    @classmethod
    def validate_campaign(cls, v):
        if not v:
            raise ValueError('Campaign is required')
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        if not v:
            return None
        if len(v.replace(' ', '')) < 10:
            raise ValueError('Please enter a valid phone number')
        return v


class HostedCheckoutPledge(PledgeBase):
    payment_method: Literal["card", "upi"]


class UpiIdPledge(PledgeBase):
    payment_method: Literal["upi-id"]
    upi_id: str

    @field_validator('upi_id')
    @classmethod
    def validate_upi_id(cls, v):
        if not is_valid_upi_id(v):
            raise ValueError('Please enter a valid UPI ID (e.g. name@bank)')
        return v


class QrPledge(PledgeBase):
    payment_method: Literal["qr"]


DonationPledge = Annotated[
    Union[HostedCheckoutPledge, UpiIdPledge, QrPledge],
    Field(discriminator="payment_method"),
]


class PaymentVerification(BaseModel):
    """Signed callback from the hosted checkout. Accepts the gateway's own field names too."""
    payment_id: str = Field(..., validation_alias=AliasChoices("paymentId", "razorpay_payment_id", "payment_id"))
    order_id: str = Field(..., validation_alias=AliasChoices("orderId", "razorpay_order_id", "order_id"))
    signature: str = Field(..., validation_alias=AliasChoices("signature", "razorpay_signature"))


# Read models

class PublicDonation(CamelModel):
    id: str
    donor_name: str
    amount: float
    campaign: str
    date: datetime
    message: str = ""


class PublicCampaign(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    target: float
    raised: float
    donors: int
    image: Optional[str] = None
    category: str
    start_date: Optional[Union[datetime, str]] = None
    end_date: Optional[Union[datetime, str]] = None
    status: str


class AdminCampaign(PublicCampaign):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CampaignStatsOut(CamelModel):
    title: str
    raised: float
    donors: int


class CampaignCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    target: float = Field(50000, gt=0)
    image: Optional[str] = None
    category: str = "General"
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class CampaignUpdate(CamelModel):
    description: Optional[str] = None
    target: Optional[float] = Field(None, gt=0)
    image: Optional[str] = None
    category: Optional[str] = None
    status: Optional[CampaignStatus] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class DashboardStats(CamelModel):
    total_donations: int
    completed_count: int
    pending_count: int
    approved_count: int
    total_amount: float


# Admin auth

class AdminLogin(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v):
        if len(v) < 8:
            raise ValueError('New password must be at least 8 characters')
        return v
