"""
Pydantic data models for call-sync.

CallRecord is owned by the CallStore; CallStatus is what the StatusProvider
reports back for one external call id.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


class UpdateStatus(str, Enum):
    """Reconciliation state of a call record."""

    PENDING = "Pending"
    UPDATED = "Updated"
    ERROR = "Error fetching data"

    @classmethod
    def needs_refresh(cls, value: Optional[str]) -> bool:
        """Pending, Error and blank/NULL records are eligible for a poll."""
        if value is None or value == "":
            return True
        return value in (cls.PENDING.value, cls.ERROR.value)


class CallStatus(BaseModel):
    """External status of a long-running call."""

    status: str
    duration_seconds: Optional[float] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    error_message: Optional[str] = None

    @field_validator("status")
    @classmethod
    def _lower(cls, v):
        return v.strip().lower()

    @field_validator("duration_seconds")
    @classmethod
    def _non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("duration_seconds must be >= 0")
        return v


class CallRecord(BaseModel):
    """Call record as stored in the CallStore."""

    id: str
    status: Optional[str] = None
    duration_seconds: Optional[float] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    update_status: Optional[UpdateStatus] = UpdateStatus.PENDING
    error_message: Optional[str] = None
    sink_row: Optional[int] = None  # 1-based row in the call-log section
    updated_at: Optional[datetime] = None

    @field_validator("update_status", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        return None if v == "" else v

    def differs_from(self, result: CallStatus) -> bool:
        """True when applying ``result`` would materially change this record."""
        return (
            self.status != result.status
            or self.duration_seconds != result.duration_seconds
            or (result.transcript is not None and self.transcript != result.transcript)
            or (result.recording_url is not None and self.recording_url != result.recording_url)
        )


class CallLogEntry(BaseModel):
    """A new call as logged by the call-initiation path."""

    call_id: str
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    status: str = "initiated"
    created_at: Optional[datetime] = None


class CallReport(BaseModel):
    """Summary statistics over the call-log section."""

    total_calls: int = 0
    total_minutes: float = 0.0
    calls_by_status: Dict[str, int] = Field(default_factory=dict)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    user_id: Optional[str] = None
