"""
Pydantic request/response schemas for the Training Tracker API

Request bodies keep the camelCase names the browser frontend sends
(categoryName, validityDays, ...); responses use snake_case except
where the dashboard expects otherwise.
"""

import re
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+$')


# ============================================
# AUTH
# ============================================

class RegisterRequest(BaseModel):
    """Request schema for account registration."""
    email: str = Field(..., max_length=255, description="Email address (login name)")
    password: str = Field(..., min_length=1, max_length=200, description="Password")
    username: Optional[str] = Field(default=None, max_length=100, description="Display name")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("email must be a valid email address")
        return v


class LoginRequest(BaseModel):
    """Request schema for login."""
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=200)


class IdentityResponse(BaseModel):
    """The identity carried by the current session."""
    user_id: int
    person_id: Optional[int] = None
    email: str
    username: Optional[str] = None
    role: str


class RegisterResponse(BaseModel):
    success: bool = True
    user_id: int
    person_id: Optional[int] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


# ============================================
# DASHBOARD
# ============================================

class StatsResponse(BaseModel):
    """Dashboard counters."""
    totalStaff: int = Field(..., ge=0, description="Active people")
    activeCourses: int = Field(..., ge=0, description="Active courses")
    expiringSoon: int = Field(..., ge=0, description="Records and certificates expiring soon")
    currentCerts: int = Field(..., ge=0, description="Records and certificates that are current")


class CountsResponse(BaseModel):
    """Status totals; total == current + expiring_soon + expired."""
    total: int = 0
    current: int = 0
    expiring_soon: int = 0
    expired: int = 0


# ============================================
# COURSES
# ============================================

class CourseCreateRequest(BaseModel):
    """Request schema for creating a course."""
    name: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    course_type: Optional[str] = Field(default=None, alias="type", max_length=100)
    category_name: Optional[str] = Field(default=None, alias="categoryName", max_length=100)
    provider_name: Optional[str] = Field(default=None, alias="providerName", max_length=200)
    validity_days: Optional[Union[int, str]] = Field(
        default=None,
        alias="validityDays",
        description="Days a completion stays valid; empty for never expires"
    )

    model_config = {"populate_by_name": True}


class CourseUpdateRequest(CourseCreateRequest):
    """Request schema for a partial course update."""
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class CourseResponse(BaseModel):
    course_id: int
    name: str
    description: Optional[str] = None
    type: str
    category: Optional[str] = None
    provider: Optional[str] = None
    validity_days: Optional[int] = None
    is_active: bool = True


class AttachmentResponse(BaseModel):
    id: int
    file_path: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class RecordRow(BaseModel):
    """A training record or third-party certificate with derived status."""
    kind: str = Field(..., description="'training' or 'thirdparty'")
    id: int
    person_id: int
    person_name: str
    email: str
    title: str
    course_id: Optional[int] = None
    provider: Optional[str] = None
    assessor: Optional[str] = None
    notes: Optional[str] = None
    completion_date: str
    expiry_date: Optional[str] = None
    status: str = Field(..., description="current, expiring_soon or expired")
    attachments: List[AttachmentResponse] = Field(default_factory=list)


class CourseDetailsResponse(BaseModel):
    course: CourseResponse
    records: List[RecordRow] = Field(default_factory=list)
    counts: CountsResponse


# ============================================
# PEOPLE
# ============================================

class PersonRollup(BaseModel):
    person_id: int
    name: str
    email: str
    role: Optional[str] = None
    total_training: int
    current: int
    expiring_soon: int
    expired: int


class PersonResponse(BaseModel):
    person_id: int
    name: str
    email: str
    is_active: bool = True
    role: Optional[str] = None


class PersonSummaryResponse(BaseModel):
    person: PersonResponse
    training: List[RecordRow] = Field(default_factory=list)
    third_party: List[RecordRow] = Field(default_factory=list)
    counts: CountsResponse


class RoleChangeRequest(BaseModel):
    role: str = Field(..., max_length=20, description="admin, manager or user")


class RoleChangeResponse(BaseModel):
    success: bool = True
    person_id: int
    user_id: int
    role: str
    previous_role: str


class MyTrainingResponse(BaseModel):
    items: List[RecordRow] = Field(default_factory=list, alias="list")
    counts: CountsResponse

    model_config = {"populate_by_name": True}


# ============================================
# SYSTEM
# ============================================

class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(default="ok", description="Database connectivity")
    version: str = Field(..., description="API version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    detail: Optional[str] = Field(default=None, description="Underlying error for server errors")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
