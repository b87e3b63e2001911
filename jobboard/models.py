"""
Job board data models.

Jobs, applications and profiles as they live in the store, plus the draft
types that validate caller input before anything is written. Rows cross the
gateway as plain dicts; ``from_row``/``to_row`` are the only translation
points.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from jobboard.errors import ValidationFailedError


class ApplicationStatus(str, Enum):
    """Lifecycle of a job application."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DurationType(str, Enum):
    """Pay period of a job's amount."""

    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class JobType(str, Enum):
    """Job category."""

    HOUSEHOLD = "household"
    IT = "it"
    DATA_ENTRY = "data-entry"
    NON_TECH = "non-tech"
    SALES = "sales"
    MARKETING = "marketing"
    FINANCE = "finance"
    EDUCATION = "education"
    HEALTHCARE = "healthcare"
    CONSTRUCTION = "construction"
    GENERAL = "general"


VALID_APPLICATION_STATUSES = frozenset(s.value for s in ApplicationStatus)

MIN_CONTACT_LENGTH = 10
MAX_TITLE_LENGTH = 200
REQUIRED_JOB_FIELDS = ("title", "organization_name", "city", "address", "contact_number", "amount")
ANONYMOUS_APPLICANT = "Anonymous"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the store; passes datetimes through."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def parse_amount(value: Any) -> Decimal:
    """Coerce a caller-supplied amount to a positive Decimal."""
    if isinstance(value, bool):
        raise ValidationFailedError("amount", "Amount must be a positive number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailedError("amount", "Amount must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationFailedError("amount", "Amount must be a positive number")
    return amount


def _require_text(value: Optional[str], field_name: str, label: str) -> str:
    if value is not None and not isinstance(value, str):
        raise ValidationFailedError(field_name, f"{label} must be text")
    text = (value or "").strip()
    if not text:
        raise ValidationFailedError(field_name, f"{label} is required")
    return text


def _coerce_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationFailedError(field_name, f"{field_name} must be one of: {allowed}")


@dataclass
class Profile:
    """Applicant profile; the source of an application's contact snapshot."""

    user_id: str
    full_name: Optional[str] = None
    current_city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            user_id=row["user_id"],
            full_name=row.get("full_name"),
            current_city=row.get("current_city"),
            phone=row.get("phone"),
            email=row.get("email"),
        )


@dataclass
class Job:
    """A job listing owned by ``user_id``.

    ``is_active`` is the open/closed flag. ``accepted_application_id`` is the
    job-level acceptance claim: once set it names the single application that
    may be accepted for this job.
    """

    id: str
    user_id: str
    title: str
    contact_number: str
    amount: Decimal
    duration_type: str = DurationType.HOURLY.value
    job_type: str = JobType.GENERAL.value
    organization_name: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    location: str = ""  # legacy single-string location
    description: Optional[str] = None
    requires_resume: bool = False
    is_active: bool = True
    accepted_application_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))

    @property
    def display_location(self) -> str:
        if self.city and self.address:
            return f"{self.city}, {self.address}"
        return self.location or self.city or self.address or ""

    def matches_location(self, query: str) -> bool:
        """Case-insensitive substring match over city, address and legacy location."""
        needle = query.strip().lower()
        if not needle:
            return True
        return any(
            needle in (value or "").lower() for value in (self.location, self.city, self.address)
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            contact_number=row.get("contact_number") or "",
            amount=Decimal(str(row["amount"])),
            duration_type=row.get("duration_type") or DurationType.HOURLY.value,
            job_type=row.get("job_type") or JobType.GENERAL.value,
            organization_name=row.get("organization_name"),
            city=row.get("city"),
            address=row.get("address"),
            location=row.get("location") or "",
            description=row.get("description"),
            requires_resume=bool(row.get("requires_resume", False)),
            is_active=bool(row.get("is_active", True)),
            accepted_application_id=row.get("accepted_application_id"),
            created_at=parse_datetime(row.get("created_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "organization_name": self.organization_name,
            "city": self.city,
            "address": self.address,
            "location": self.location,
            "contact_number": self.contact_number,
            "amount": str(self.amount),
            "duration_type": self.duration_type,
            "job_type": self.job_type,
            "description": self.description,
            "requires_resume": self.requires_resume,
            "is_active": self.is_active,
            "accepted_application_id": self.accepted_application_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class JobApplication:
    """An application to a job, with the applicant's contact details frozen at submit time."""

    id: str
    job_id: str
    applicant_id: str
    message: str
    applicant_name: str = ANONYMOUS_APPLICANT
    applicant_email: str = ""
    applicant_phone: str = ""
    applicant_location: str = ""
    resume_url: Optional[str] = None  # object key in the resumes bucket
    status: str = ApplicationStatus.PENDING.value
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, ApplicationStatus):
            self.status = self.status.value
        if self.status not in VALID_APPLICATION_STATUSES:
            raise ValueError(f"Invalid status: {self.status}")

    @property
    def is_pending(self) -> bool:
        return self.status == ApplicationStatus.PENDING.value

    @property
    def is_accepted(self) -> bool:
        return self.status == ApplicationStatus.ACCEPTED.value

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobApplication":
        return cls(
            id=row["id"],
            job_id=row["job_id"],
            applicant_id=row["applicant_id"],
            message=row.get("message") or "",
            applicant_name=row.get("applicant_name") or ANONYMOUS_APPLICANT,
            applicant_email=row.get("applicant_email") or "",
            applicant_phone=row.get("applicant_phone") or "",
            applicant_location=row.get("applicant_location") or "",
            resume_url=row.get("resume_url"),
            status=row.get("status") or ApplicationStatus.PENDING.value,
            created_at=parse_datetime(row.get("created_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "applicant_id": self.applicant_id,
            "applicant_name": self.applicant_name,
            "applicant_email": self.applicant_email,
            "applicant_phone": self.applicant_phone,
            "applicant_location": self.applicant_location,
            "message": self.message,
            "resume_url": self.resume_url,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class JobDraft:
    """Validated input for posting or editing a job.

    Construction raises ``ValidationFailedError`` on the first violated
    constraint, so an invalid draft never reaches the store.
    """

    title: str
    organization_name: str
    city: str
    address: str
    contact_number: str
    amount: Any
    duration_type: Any = DurationType.HOURLY
    job_type: Any = JobType.GENERAL
    description: Optional[str] = None
    requires_resume: bool = False

    def __post_init__(self):
        self.title = _require_text(self.title, "title", "Job title")
        if len(self.title) > MAX_TITLE_LENGTH:
            raise ValidationFailedError(
                "title", f"Job title too long (max {MAX_TITLE_LENGTH} characters)"
            )
        self.organization_name = _require_text(
            self.organization_name, "organization_name", "Organization name"
        )
        self.city = _require_text(self.city, "city", "City")
        self.address = _require_text(self.address, "address", "Address")
        if self.contact_number is not None and not isinstance(self.contact_number, str):
            raise ValidationFailedError("contact_number", "Contact number must be text")
        contact = (self.contact_number or "").strip()
        if len(contact) < MIN_CONTACT_LENGTH:
            raise ValidationFailedError("contact_number", "Valid contact number is required")
        self.contact_number = contact
        self.amount = parse_amount(self.amount)
        self.duration_type = _coerce_enum(DurationType, self.duration_type, "duration_type")
        self.job_type = _coerce_enum(JobType, self.job_type, "job_type")
        if self.description is not None:
            self.description = self.description.strip() or None
        self.requires_resume = bool(self.requires_resume)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "JobDraft":
        """Build a draft from loose input such as a form or JSON body.

        Unknown keys and missing required fields raise ``ValidationFailedError``
        instead of the ``TypeError`` the constructor would.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationFailedError(unknown[0], f"Unknown job field(s): {', '.join(unknown)}")
        for name in REQUIRED_JOB_FIELDS:
            if name not in data:
                raise ValidationFailedError(name, f"{name} is required")
        return cls(**dict(data))

    @property
    def location(self) -> str:
        return f"{self.city}, {self.address}"

    def to_fields(self) -> Dict[str, Any]:
        """Editable columns; never includes ownership, status or the acceptance claim."""
        return {
            "title": self.title,
            "organization_name": self.organization_name,
            "city": self.city,
            "address": self.address,
            "location": self.location,
            "contact_number": self.contact_number,
            "amount": str(self.amount),
            "duration_type": self.duration_type.value,
            "job_type": self.job_type.value,
            "description": self.description,
            "requires_resume": self.requires_resume,
        }

    def to_row(self, owner_id: str) -> Dict[str, Any]:
        row = self.to_fields()
        row.update({"user_id": owner_id, "is_active": True, "accepted_application_id": None})
        return row


@dataclass
class ApplicationDraft:
    """Validated input for submitting an application."""

    job_id: str
    message: str
    has_resume: bool = False

    def __post_init__(self):
        self.job_id = _require_text(self.job_id, "job_id", "Job")
        self.message = _require_text(self.message, "message", "Application message")

    def validate_for(self, job: Job) -> None:
        """Check the draft against the job it targets."""
        if job.requires_resume and not self.has_resume:
            raise ValidationFailedError(
                "resume", "Please upload your resume to apply for this job."
            )
