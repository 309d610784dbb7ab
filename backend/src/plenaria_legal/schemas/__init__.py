"""
Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator, model_validator
from typing import Optional, Dict, Any, Generic, TypeVar, List, Literal
from datetime import datetime

from plenaria_legal.core.constants import MAX_TRIAL_DAYS, MIN_TRIAL_DAYS, UNLIMITED_QUOTA
from plenaria_legal.core.timeutils import utcnow

# Generic type for response data
T = TypeVar('T')

PlanName = Literal["basic", "plus", "premium"]


class Metadata(BaseModel):
    """Standard metadata for API responses."""
    status_code: int = Field(..., description="HTTP status code")
    errors: List[str] = Field(default_factory=list, description="List of error messages")
    execution_time: float = Field(..., description="Request execution time in seconds")
    timestamp: datetime = Field(default_factory=utcnow, description="Response timestamp")


class StandardResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""
    data: T = Field(..., description="Response data")
    metadata: Metadata = Field(..., description="Response metadata")
    success: int = Field(..., description="Success indicator (1 for success, 0 for failure)")


class ErrorResponse(BaseModel):
    """Error response schema."""
    message: str = Field(..., description="Error message")
    code: str = Field(default="error", description="Machine-readable error type")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class SuccessResponse(BaseModel):
    """Success response schema."""
    message: str = Field(..., description="Success message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional success details")


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class PaginatedResponse(BaseModel):
    items: List[Any]
    pagination: Pagination


# Users

class UserResponse(BaseModel):
    """Public user representation. The password hash is never included."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    phone: Optional[str] = None
    role: str
    status: str
    plan: Optional[str] = None
    plan_expires_at: Optional[datetime] = None
    trial_expires_at: Optional[datetime] = None
    is_on_trial: bool = False
    trial_active: bool = False
    plan_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserContact(BaseModel):
    """Contact block attached to consultations for parties with standing."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    phone: Optional[str] = None


class LawyerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str


# Authentication

class RegisterRequest(BaseModel):
    """Self-registration; admins are never created through this path."""
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=1, max_length=128, description="Password")
    role: Literal["customer", "lawyer"] = Field(..., description="Account role")
    phone: Optional[str] = Field(None, max_length=32, description="Phone number")
    plan: Optional[PlanName] = Field(None, description="Plan tier, required for customers")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email or phone")
    password: str = Field(..., min_length=1, description="Password")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    is_pending: bool = False


# Consultations

class ConsultationCreate(BaseModel):
    """Either ``description`` or ``question`` must carry the request text."""
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    question: Optional[str] = Field(None, max_length=10000)
    lawyer_id: Optional[int] = Field(None, ge=1)
    attachments: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def require_text(self):
        if not (self.description or '').strip() and not (self.question or '').strip():
            raise ValueError('Either description or question is required')
        return self

    @property
    def text(self) -> str:
        return ((self.description or '').strip() or (self.question or '').strip())


class ConsultationReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class MessageCreate(BaseModel):
    text: Optional[str] = Field(None, max_length=10000)
    content: Optional[str] = Field(None, max_length=10000)
    attachments: List[str] = Field(default_factory=list)

    @property
    def body(self) -> str:
        return (self.text or '').strip() or (self.content or '').strip()


class QuotaResponse(BaseModel):
    """Quota snapshot; ``None`` limit and remaining mean unlimited."""
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    is_unlimited: bool = False

    @classmethod
    def from_counts(cls, used: int, limit: int) -> "QuotaResponse":
        if limit == UNLIMITED_QUOTA:
            return cls(used=used, limit=None, remaining=None, is_unlimited=True)
        return cls(used=used, limit=limit, remaining=max(limit - used, 0), is_unlimited=False)


class ConsultationResponse(BaseModel):
    id: int
    customer_id: int
    lawyer_id: Optional[int] = None
    status: str
    title: str
    description: str
    question: str
    attachments: List[str] = Field(default_factory=list)
    response_by: Optional[datetime] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    session_duration: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_sla_breach: bool = False
    customer: Optional[UserContact] = None
    lawyer: Optional[LawyerSummary] = None


class ConsultationCreatedResponse(BaseModel):
    consultation: ConsultationResponse
    quota: QuotaResponse


class MessageSender(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: str


class MessageResponse(BaseModel):
    id: int
    consultation_id: int
    sender: MessageSender
    content: str
    attachments: List[str] = Field(default_factory=list)
    is_read: bool = False
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# Admin

class PlanUpdate(BaseModel):
    plan: PlanName
    plan_expires_at: Optional[datetime] = None


class TrialGrant(BaseModel):
    days: int = Field(..., ge=MIN_TRIAL_DAYS, le=MAX_TRIAL_DAYS, description="Trial length in days")


class LawyerRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


# Metrics

class TrendPoint(BaseModel):
    date: str
    count: int


class ConsultationMetrics(BaseModel):
    average_response_time_hours: float
    pending_count: int
    sla_breaches: int
    by_status: Dict[str, int]
    average_session_duration_minutes: int
    trend: List[TrendPoint]


class UserMetrics(BaseModel):
    by_role: Dict[str, int]
    pending_lawyers: int
    customers_by_plan: Dict[str, int]


class MetricsResponse(BaseModel):
    consultations: ConsultationMetrics
    users: UserMetrics


class HealthCheckResponse(BaseModel):
    """Schema for health check responses."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = Field(..., description="API version")
    environment: str
    database: bool
    live_sessions: int = 0
