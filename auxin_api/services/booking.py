"""Appointment booking on the fixed 30-minute business-hours grid.

Double booking is prevented twice: a read-before-write pre-check that gives
precise errors in the common case, and the partial unique indexes created in
``db.ensure_indexes`` which decide the winner when two requests pass the
pre-check at the same time. The loser's DuplicateKeyError is translated to
the same conflict the pre-check would have raised.
"""

import logging
import math
import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from bson import ObjectId
from pymongo import DESCENDING, ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from auxin_api.db import ACTIVE_STATUSES, APPOINTMENTS
from auxin_api.errors import (
    AlreadyCancelledError,
    AppointmentNotFoundError,
    CancellationTooLateError,
    DuplicateDayBookingError,
    InvalidInputError,
    SlotUnavailableError,
)
from auxin_api.models.appointment import (
    LAST_SLOT_MINUTES,
    OPENING_MINUTES,
    SLOT_MINUTES,
    STATUS_VALUES,
    AppointmentStatus,
    generate_time_slots,
    serialize_appointment,
)
from auxin_api.services.identity import normalize_email
from auxin_api.utils.clock import to_naive_utc, to_zone, utcnow

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")
CANCELLATION_CUTOFF = timedelta(hours=1)
MAX_PAGE_SIZE = 100


def parse_date(value) -> date:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise InvalidInputError("Invalid date format. Use YYYY-MM-DD", code="INVALID_DATE_FORMAT")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidInputError("Invalid date format. Use YYYY-MM-DD", code="INVALID_DATE_FORMAT")


def parse_slot_time(value) -> str:
    """Validates a slot time and returns it zero-padded ("9:00" -> "09:00")."""
    match = TIME_RE.match(value) if isinstance(value, str) else None
    if not match:
        raise InvalidInputError("Invalid time format. Use HH:MM", code="INVALID_TIME_FORMAT")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if total < OPENING_MINUTES or total > LAST_SLOT_MINUTES or minutes % SLOT_MINUTES != 0:
        raise InvalidInputError(
            "Time must be within business hours (09:00-17:30) in 30-minute intervals",
            code="INVALID_TIME_SLOT",
        )
    return f"{hours:02d}:{minutes:02d}"


def day_key(day: date) -> datetime:
    """Appointments store the calendar day as midnight, time of day stripped."""
    return datetime(day.year, day.month, day.day)


def appointment_start(day, time_value: str, tz: ZoneInfo) -> datetime:
    """Start of the appointment as naive UTC."""
    if isinstance(day, datetime):
        day = day.date()
    hours, minutes = (int(part) for part in time_value.split(":"))
    local = datetime(day.year, day.month, day.day, hours, minutes, tzinfo=tz)
    return to_naive_utc(local)


def can_be_cancelled(day, time_value: str, status: str, now: datetime, tz: ZoneInfo) -> bool:
    """True while ``now`` is strictly more than an hour before the start.

    ``now`` is naive UTC, as produced by ``utcnow``.
    """
    if status == AppointmentStatus.CANCELLED.value:
        return False
    return now < appointment_start(day, time_value, tz) - CANCELLATION_CUTOFF


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _paginate(page, limit, default_limit: int):
    page_num = max(1, _as_int(page, 1))
    limit_num = min(MAX_PAGE_SIZE, max(1, _as_int(limit, default_limit)))
    return page_num, limit_num


class BookingEngine:
    def __init__(self, pool, clock=utcnow, timezone="UTC"):
        self._pool = pool
        self._clock = clock
        self.tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    async def _appointments(self):
        db = await self._pool.get_database()
        return db[APPOINTMENTS]

    def today(self) -> date:
        return to_zone(self._clock(), self.tz).date()

    async def compute_availability(self, date_value) -> dict:
        if not date_value:
            raise InvalidInputError(
                "Date parameter is required in YYYY-MM-DD format", code="INVALID_DATE"
            )
        day = parse_date(date_value)
        if day < self.today():
            raise InvalidInputError("Cannot check availability for past dates", code="PAST_DATE")

        appointments = await self._appointments()
        cursor = appointments.find(
            {"date": day_key(day), "status": {"$in": ACTIVE_STATUSES}}, {"time": 1}
        )
        booked_times = {doc["time"] for doc in await cursor.to_list(length=None)}

        slots = [
            {"id": slot, "time": slot, "available": slot not in booked_times}
            for slot in generate_time_slots()
        ]
        available_count = sum(1 for slot in slots if slot["available"])
        logger.info("Available slots for %s: %d/%d", date_value, available_count, len(slots))

        return {
            "slots": slots,
            "date": date_value,
            "totalSlots": len(slots),
            "availableCount": available_count,
        }

    async def book_slot(self, user_id: str, auth_email: str, user_email, user_name,
                        date_value, time_value) -> dict:
        if not date_value or not time_value or not user_email or not user_name:
            raise InvalidInputError(
                "All fields are required: date, time, userEmail, userName", code="MISSING_FIELDS"
            )
        day = parse_date(date_value)
        slot_time = parse_slot_time(time_value)
        if day < self.today():
            raise InvalidInputError("Cannot book appointments for past dates", code="PAST_DATE")

        email = normalize_email(user_email)
        if email != normalize_email(auth_email):
            raise InvalidInputError("Email must match authenticated user", code="EMAIL_MISMATCH")

        name = str(user_name).strip()
        if not name or len(name) > 100:
            raise InvalidInputError("userName must be 1-100 characters", code="INVALID_USER_NAME")

        appointments = await self._appointments()
        key = day_key(day)

        if await self._slot_taken(appointments, key, slot_time):
            raise SlotUnavailableError()
        if await self._day_taken(appointments, key, user_id):
            raise DuplicateDayBookingError()

        now = self._clock()
        doc = {
            "userId": user_id,
            "userEmail": email,
            "userName": name,
            "date": key,
            "time": slot_time,
            "status": AppointmentStatus.CONFIRMED.value,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            result = await appointments.insert_one(doc)
        except DuplicateKeyError:
            logger.info("Concurrent booking lost the race for %s %s", date_value, slot_time)
            error = await self._conflict_after_race(appointments, key, slot_time, user_id)
            raise error

        doc["_id"] = result.inserted_id
        logger.info("Appointment booked: %s (%s) on %s at %s", name, email, date_value, slot_time)
        return serialize_appointment(doc)

    async def _slot_taken(self, appointments, key: datetime, slot_time: str) -> bool:
        existing = await appointments.find_one(
            {"date": key, "time": slot_time, "status": {"$in": ACTIVE_STATUSES}}
        )
        return existing is not None

    async def _day_taken(self, appointments, key: datetime, user_id: str) -> bool:
        existing = await appointments.find_one(
            {"userId": user_id, "date": key, "status": {"$in": ACTIVE_STATUSES}}
        )
        return existing is not None

    async def _conflict_after_race(self, appointments, key, slot_time, user_id):
        # Either unique index may have fired; report the one that now holds.
        if await self._slot_taken(appointments, key, slot_time):
            return SlotUnavailableError("Time slot was just booked by another user")
        if await self._day_taken(appointments, key, user_id):
            return DuplicateDayBookingError()
        return SlotUnavailableError("Time slot was just booked by another user")

    async def cancel(self, appointment_id: str, user_id: str) -> dict:
        if not appointment_id or not ObjectId.is_valid(str(appointment_id)):
            raise AppointmentNotFoundError()

        appointments = await self._appointments()
        # Scoped by owner: another user's appointment looks exactly like a missing one.
        appointment = await appointments.find_one(
            {"_id": ObjectId(str(appointment_id)), "userId": user_id}
        )
        if not appointment:
            raise AppointmentNotFoundError()

        if appointment["status"] == AppointmentStatus.CANCELLED.value:
            raise AlreadyCancelledError()

        now = self._clock()
        if not can_be_cancelled(appointment["date"], appointment["time"], appointment["status"], now, self.tz):
            raise CancellationTooLateError()

        updated = await appointments.find_one_and_update(
            {"_id": appointment["_id"], "status": {"$ne": AppointmentStatus.CANCELLED.value}},
            {"$set": {"status": AppointmentStatus.CANCELLED.value, "updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise AlreadyCancelledError()

        logger.info("Appointment cancelled: %s on %s at %s",
                    updated["userName"], updated["date"].strftime("%Y-%m-%d"), updated["time"])
        return serialize_appointment(updated)

    async def list_for_user(self, user_id: str, status=None, page=1, limit=50) -> dict:
        query = {"userId": user_id}
        if status:
            if status not in STATUS_VALUES:
                raise InvalidInputError(
                    "Invalid status. Must be: pending, confirmed, or cancelled", code="INVALID_STATUS"
                )
            query["status"] = status

        page_num, limit_num = _paginate(page, limit, 50)
        return await self._page(query, [("date", DESCENDING), ("time", DESCENDING)], page_num, limit_num)

    async def list_all(self, date_value=None, status=None, page=1, limit=100) -> dict:
        """Every user's appointments. Malformed filters are ignored, not rejected."""
        query = {}
        if isinstance(date_value, str) and DATE_RE.match(date_value):
            try:
                query["date"] = day_key(parse_date(date_value))
            except InvalidInputError:
                pass
        if status in STATUS_VALUES:
            query["status"] = status

        page_num, limit_num = _paginate(page, limit, 100)
        return await self._page(query, [("date", ASCENDING), ("time", ASCENDING)], page_num, limit_num)

    async def _page(self, query: dict, sort: list, page_num: int, limit_num: int) -> dict:
        appointments = await self._appointments()
        cursor = appointments.find(query).sort(sort).skip((page_num - 1) * limit_num).limit(limit_num)
        docs = await cursor.to_list(length=None)
        total = await appointments.count_documents(query)
        return {
            "appointments": [serialize_appointment(doc) for doc in docs],
            "pagination": {
                "page": page_num,
                "limit": limit_num,
                "total": total,
                "pages": math.ceil(total / limit_num),
            },
        }
