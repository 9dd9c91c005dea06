"""
Core data models for the scheduled delivery engine.
These are the universal types shared across all modules.

Rows coming out of the row store are plain ``{column: value}`` dicts; they are
decoded into these models once, at the store boundary, and encoded back with
``to_row()`` on the way in.
"""
from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class ValidationError(ValueError):
    """A job or recipient that must be rejected without a delivery attempt."""


class InvalidTransition(ValueError):
    def __init__(self, current: "JobStatus", target: "JobStatus"):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move job from {current.value} to {target.value}")


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    def can_transition_to(self, target: JobStatus) -> bool:
        return self == JobStatus.PENDING and target in (JobStatus.SENT, JobStatus.FAILED)


class MediaCategory(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"

    @classmethod
    def from_mime(cls, mime_type: Optional[str]) -> MediaCategory:
        mt = (mime_type or "").lower()
        if "image" in mt:
            return cls.IMAGE
        if "video" in mt:
            return cls.VIDEO
        if "audio" in mt:
            return cls.AUDIO
        return cls.DOCUMENT


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class Relationship(str, Enum):
    FRIEND = "friend"
    FAMILY = "family"
    RELATIVE = "relative"
    OTHER = "other"


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ──────────────────────────────────────────────────────────────
#  Timestamp helpers
# ──────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:16]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 cell into an aware datetime (naive values are UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ──────────────────────────────────────────────────────────────
#  Job — one row of the Schedule table
# ──────────────────────────────────────────────────────────────

SCHEDULE_COLUMNS = [
    "ID", "BatchID", "Recipient", "Caption", "MediaUrl",
    "MediaType", "SendAt", "Status", "Error", "SentAt",
]

_JOB_FIELD_TO_COLUMN = {
    "id": "ID",
    "batch_id": "BatchID",
    "recipient": "Recipient",
    "caption": "Caption",
    "media_url": "MediaUrl",
    "media_type": "MediaType",
    "send_at": "SendAt",
    "status": "Status",
    "error": "Error",
    "sent_at": "SentAt",
}


class Job(BaseModel):
    """A single deferred delivery task."""
    id: str
    batch_id: str = ""
    recipient: str
    caption: Optional[str] = None
    media_url: Optional[str] = None           # absolute URL or path under the media root
    media_type: Optional[str] = None          # MIME string
    send_at: datetime
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    @field_validator("caption", "media_url", "media_type", "error", mode="before")
    @classmethod
    def _empty_cells(cls, v):
        return _blank_to_none(v)

    @field_validator("send_at", mode="before")
    @classmethod
    def _parse_send_at(cls, v):
        return parse_timestamp(v)

    @field_validator("sent_at", mode="before")
    @classmethod
    def _parse_sent_at(cls, v):
        return parse_timestamp(_blank_to_none(v))

    @property
    def has_media(self) -> bool:
        return bool(self.media_url)

    @property
    def is_remote_media(self) -> bool:
        return bool(self.media_url) and bool(re.match(r"^https?://", self.media_url, re.IGNORECASE))

    def is_due(self, now: datetime, tolerance_s: float = 0.0) -> bool:
        if self.status != JobStatus.PENDING:
            return False
        return (self.send_at - now).total_seconds() <= tolerance_s

    def check_transition(self, target: JobStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransition(self.status, target)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Job:
        data = {field: row.get(column) for field, column in _JOB_FIELD_TO_COLUMN.items()}
        data["status"] = (data.get("status") or JobStatus.PENDING.value).strip().lower()
        data["batch_id"] = data.get("batch_id") or ""
        return cls(**data)

    def to_row(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "BatchID": self.batch_id,
            "Recipient": self.recipient,
            "Caption": self.caption,
            "MediaUrl": self.media_url,
            "MediaType": self.media_type,
            "SendAt": format_timestamp(self.send_at),
            "Status": self.status.value,
            "Error": self.error,
            "SentAt": format_timestamp(self.sent_at),
        }


class JobPatch(BaseModel):
    """Partial update applied by the queue processor."""
    status: Optional[JobStatus] = None
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        patch: dict[str, Any] = {}
        if self.status is not None:
            patch["Status"] = self.status.value
        if self.error is not None:
            patch["Error"] = self.error
        if self.sent_at is not None:
            patch["SentAt"] = format_timestamp(self.sent_at)
        return patch


# ──────────────────────────────────────────────────────────────
#  Reminder Source — one row of the Birthdays table
# ──────────────────────────────────────────────────────────────

BIRTHDAY_COLUMNS = [
    "ID", "Name", "Phone", "Birthday", "Gender",
    "Relationship", "CustomMessage", "CreatedAt",
]

_DATE_RE = re.compile(r"^(?:(?P<year>\d{4})-)?(?P<month>\d{1,2})-(?P<day>\d{1,2})")


class ReminderSource(BaseModel):
    """A recurring month-day event; the year only feeds age arithmetic."""
    id: str
    name: str
    phone: str
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    year: Optional[int] = None
    gender: Gender = Gender.MALE
    relationship: Relationship = Relationship.OTHER
    custom_message: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("custom_message", "created_at", mode="before")
    @classmethod
    def _empty_cells(cls, v):
        return _blank_to_none(v)

    @field_validator("relationship", mode="before")
    @classmethod
    def _known_relationship(cls, v):
        value = (v or "").strip().lower()
        return value if value in Relationship._value2member_map_ else Relationship.OTHER.value

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, v):
        return (v or Gender.MALE.value).strip().lower()

    def occurs_on(self, day: date) -> bool:
        """True if the recurrence falls on ``day``; Feb 29 maps to Feb 28 in common years."""
        if (self.month, self.day) == (day.month, day.day):
            return True
        if (self.month, self.day) == (2, 29) and (day.month, day.day) == (2, 28):
            try:
                date(day.year, 2, 29)
            except ValueError:
                return True
        return False

    def age_on(self, day: date) -> Optional[int]:
        if self.year is None:
            return None
        age = day.year - self.year
        return age if age > 0 else None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ReminderSource:
        raw_date = str(row.get("Birthday") or "").strip()
        match = _DATE_RE.match(raw_date)
        if not match:
            raise ValidationError(f"Unrecognised date: {raw_date!r}")
        year = match.group("year")
        return cls(
            id=str(row.get("ID") or ""),
            name=str(row.get("Name") or "").strip(),
            phone=str(row.get("Phone") or "").strip(),
            month=int(match.group("month")),
            day=int(match.group("day")),
            year=int(year) if year else None,
            gender=row.get("Gender"),
            relationship=row.get("Relationship"),
            custom_message=row.get("CustomMessage"),
            created_at=row.get("CreatedAt"),
        )


# ──────────────────────────────────────────────────────────────
#  Media payload handed to the delivery transport
# ──────────────────────────────────────────────────────────────

class MediaPayload(BaseModel):
    """Either raw bytes read from the media root or a remote URL reference."""
    category: MediaCategory
    mime_type: str = "application/octet-stream"
    filename: str = ""
    data: Optional[bytes] = None
    url: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.url is not None
