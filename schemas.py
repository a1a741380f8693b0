from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Literal, Optional
from datetime import datetime, timezone
import re

CampaignStatus = Literal["draft", "active", "completed", "cancelled"]


def _parse_datetime(v):
    """Accept ISO datetimes, plain dates and empty strings from HTML date inputs."""
    if v is None or isinstance(v, datetime):
        parsed = v
    else:
        v = str(v).strip()
        if not v:
            return None
        parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
    if parsed is not None and parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class AdminLogin(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    expires_in: int


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v):
        if len(v) < 8:
            raise ValueError('New password must be at least 8 characters')
        return v


# Campaigns

class CampaignFields(BaseModel):
    name: Optional[str] = None
    reference_image: Optional[str] = None
    rules: Optional[str] = None
    category: Optional[Literal["drawing", "coloring", "painting", "mixed"]] = None
    age_group: Optional[Literal["all", "kids", "teens", "adults"]] = None
    campaign_type: Optional[Literal["premium", "point-based", "free"]] = None
    max_participants: Optional[int] = Field(None, ge=1)
    entry_fee_amount: Optional[float] = Field(None, ge=0)
    entry_fee_type: Optional[Literal["rupees", "points"]] = None
    points_required: Optional[int] = Field(None, ge=0)
    first_prize: Optional[float] = Field(None, ge=0)
    second_prize: Optional[float] = Field(None, ge=0)
    platform_share: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    submission_deadline: Optional[datetime] = None
    result_date: Optional[datetime] = None
    submission_type: Optional[Literal["offline", "digital", "both"]] = None

    @field_validator('start_date', 'end_date', 'submission_deadline', 'result_date', mode='before')
    @classmethod
    def parse_dates(cls, v):
        return _parse_datetime(v)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if v is None:
            return v
        if not v.strip():
            raise ValueError('Campaign name is required')
        if len(v) > 200:
            raise ValueError('Campaign name must be less than 200 characters')
        return v.strip()

    @model_validator(mode='after')
    def validate_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError('End date must be after start date')
        if self.start_date and self.submission_deadline and self.submission_deadline < self.start_date:
            raise ValueError('Submission deadline must be after start date')
        return self


class CampaignCreate(CampaignFields):
    name: str
    reference_image: str
    campaign_type: Literal["premium", "point-based", "free"] = "premium"
    max_participants: int = Field(20, ge=1)

    @field_validator('reference_image')
    @classmethod
    def validate_reference_image(cls, v):
        if not v or not v.strip():
            raise ValueError('Reference image is required')
        return v.strip()

    @model_validator(mode='after')
    def validate_entry_rules(self):
        if self.campaign_type == "point-based" and not self.points_required:
            raise ValueError('Point-based campaigns need points_required greater than 0')
        return self


class CampaignUpdate(CampaignFields):
    pass


class StatusChange(BaseModel):
    status: CampaignStatus


class SubmissionCreate(BaseModel):
    user_id: int
    submission_image: str
    title: Optional[str] = ""
    description: Optional[str] = ""

    @field_validator('submission_image')
    @classmethod
    def validate_image(cls, v):
        if not v.strip():
            raise ValueError('Submission image is required')
        return v.strip()


class SubmissionRate(BaseModel):
    rating: float = Field(..., ge=0, le=10)
    notes: Optional[str] = None
    prize_position: Optional[Literal["first", "second"]] = None


class DistributePrizes(BaseModel):
    campaign_id: int
    first_winner_id: int
    second_winner_id: int


# Withdrawals

class BankDetails(BaseModel):
    account_holder_name: str
    account_number: str
    ifsc_code: str
    bank_name: str

    @field_validator('account_holder_name', 'account_number', 'ifsc_code', 'bank_name')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError('Bank details cannot be blank')
        return v.strip()

    @field_validator('ifsc_code')
    @classmethod
    def validate_ifsc(cls, v):
        if not re.match(r'^[A-Za-z]{4}0[A-Za-z0-9]{6}$', v):
            raise ValueError('Please enter a valid IFSC code')
        return v.upper()


class WithdrawalDetails(BaseModel):
    upi_id: Optional[str] = None
    bank_details: Optional[BankDetails] = None


class WithdrawalRequest(BaseModel):
    user_id: int
    amount: float = Field(..., gt=0)
    method: Literal["upi", "bank"]
    details: WithdrawalDetails

    @model_validator(mode='after')
    def validate_method_details(self):
        if self.method == "upi":
            upi_id = (self.details.upi_id or "").strip()
            if not re.match(r'^[\w.\-]{2,}@[A-Za-z]{2,}$', upi_id):
                raise ValueError('Please enter a valid UPI ID')
            self.details.upi_id = upi_id
        elif self.details.bank_details is None:
            raise ValueError('Bank details are required for bank withdrawals')
        return self


class WithdrawalProcess(BaseModel):
    status: Literal["completed", "rejected"]
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class WithdrawalCancel(BaseModel):
    user_id: int


# Coupons

class CouponCreate(BaseModel):
    code: str
    description: Optional[str] = ""
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., gt=0)
    min_purchase_amount: Optional[float] = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    expiry_date: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    applicable_campaigns: List[int] = []
    is_active: Optional[bool] = None

    @field_validator('expiry_date', mode='before')
    @classmethod
    def parse_expiry(cls, v):
        return _parse_datetime(v)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        v = v.strip().upper()
        if not re.match(r'^[A-Z0-9_-]{3,32}$', v):
            raise ValueError('Coupon code must be 3-32 letters, numbers, hyphens or underscores')
        return v

    @model_validator(mode='after')
    def validate_discount(self):
        if self.discount_type == "percentage":
            if self.discount_value > 100:
                raise ValueError('Percentage discount cannot exceed 100')
        else:
            # Caps only apply to percentage discounts
            self.max_discount_amount = None
        if self.min_purchase_amount is None:
            self.min_purchase_amount = 0
        return self


class CouponRedeem(BaseModel):
    code: str
    amount: float = Field(..., ge=0)
    campaign_id: Optional[int] = None

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper()


# Push notifications

class PushKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscribe(BaseModel):
    endpoint: str
    keys: PushKeys
    user_id: Optional[int] = None


class PushMessage(BaseModel):
    title: str
    body: str
    icon: Optional[str] = "/logo_purple.png"
    url: Optional[str] = "/"

    @field_validator('title', 'body')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError('Title and body are required')
        return v.strip()


class PushToUser(PushMessage):
    user_id: int


class PushToCampaign(PushMessage):
    campaign_id: int
