from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMINISTRATOR = "administrator"


class VerificationStatus(str, Enum):
    UNSUBMITTED = "unsubmitted"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class DocumentType(str, Enum):
    BUSINESS_REGISTRATION = "businessRegistration"
    REPRESENTATIVE_ID = "representativeId"
    PROFESSIONAL_LICENSES = "professionalLicenses"
    PORTFOLIO = "portfolio"


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: ActorRole


class FileRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    storage_path: str
    upload_date: datetime
    size: int = Field(ge=0)
    mime_type: str


class AuditEntry(BaseModel):
    """Immutable record of a status change.

    ``reviewer`` is ``None`` for entries generated by the system.
    """

    model_config = ConfigDict(frozen=True)

    status: str
    date: datetime
    notes: Optional[str] = None
    reviewer: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class DocumentBundleView(BaseModel):
    files: list[FileRecord] = Field(default_factory=list)
    verified: bool = False
    notes: Optional[str] = None


class ProviderVerificationView(BaseModel):
    provider_id: str
    display_name: str
    verification_status: VerificationStatus
    is_active: bool = True
    status_notes: Optional[str] = None
    documents: Dict[DocumentType, DocumentBundleView] = Field(default_factory=dict)
    history: list[AuditEntry] = Field(default_factory=list)
    status_history: list[AuditEntry] = Field(default_factory=list)
    registered_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED


class ProviderSummary(BaseModel):
    provider_id: str
    display_name: str
    verification_status: VerificationStatus
    is_active: bool
    document_count: int = 0
    last_reviewed_at: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED


class Booking(BaseModel):
    id: str
    service_id: str
    customer_id: str
    provider_id: str
    date: str
    time: str
    location: str
    notes: str = ""
    status: BookingStatus
    status_history: list[AuditEntry] = Field(default_factory=list)
    created_at: datetime


class CatalogService(BaseModel):
    id: str
    provider_id: str
    name: str
    is_available: bool = True
    created_at: datetime


class ProviderRegisterRequest(BaseModel):
    display_name: str = ""


class DocumentReviewDecision(BaseModel):
    verified: bool
    notes: Optional[str] = None


class VerificationReviewRequest(BaseModel):
    approved: bool
    notes: str = ""
    document_review: Optional[Dict[str, DocumentReviewDecision]] = None


class ProviderStatusUpdateRequest(BaseModel):
    is_active: bool
    notes: str = ""


class ServiceCreateRequest(BaseModel):
    name: str
    is_available: bool = True


class ServiceAvailabilityRequest(BaseModel):
    is_available: bool


class BookingCreateRequest(BaseModel):
    service_id: str
    date: str
    time: str
    location: str
    notes: str = ""


class BookingTransitionRequest(BaseModel):
    notes: str = ""


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str = "homeserve-demo"
    role: ActorRole = ActorRole.CUSTOMER


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: ActorRole
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: ActorRole


class DeviceTokenRegisterRequest(BaseModel):
    device_token: str
    platform: Literal["android", "ios", "web"] = "android"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["booking", "verification", "account", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
