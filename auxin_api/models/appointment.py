from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


STATUS_VALUES = [status.value for status in AppointmentStatus]

# Business-hours grid: 09:00 through 17:30 inclusive, every 30 minutes
OPENING_MINUTES = 9 * 60
LAST_SLOT_MINUTES = 17 * 60 + 30
SLOT_MINUTES = 30


def generate_time_slots() -> list:
    return [
        f"{minutes // 60:02d}:{minutes % 60:02d}"
        for minutes in range(OPENING_MINUTES, LAST_SLOT_MINUTES + 1, SLOT_MINUTES)
    ]


class BookAppointmentRequest(BaseModel):
    # Optional so missing fields surface as MISSING_FIELDS rather than a generic 400
    date: Optional[str] = None
    time: Optional[str] = None
    userEmail: Optional[str] = None
    userName: Optional[str] = None


class AppointmentOut(BaseModel):
    id: str
    userId: str
    userEmail: str
    userName: str
    date: str
    time: str
    status: AppointmentStatus
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "AppointmentOut":
        day = doc["date"]
        if isinstance(day, (datetime, date)):
            day = day.strftime("%Y-%m-%d")
        return cls(
            id=str(doc["_id"]),
            userId=doc["userId"],
            userEmail=doc["userEmail"],
            userName=doc["userName"],
            date=day,
            time=doc["time"],
            status=doc["status"],
            createdAt=doc.get("createdAt"),
            updatedAt=doc.get("updatedAt"),
        )


def serialize_appointment(doc: dict) -> dict:
    return AppointmentOut.from_document(doc).model_dump(mode="json")
