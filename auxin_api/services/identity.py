"""User and PendingUser persistence behind one lookup.

Code that used to check "is there a User? if not, is there a PendingUser?" at
every step asks :meth:`IdentityStore.resolve` once and dispatches on the
returned :class:`AccountState`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from auxin_api.db import PENDING_USERS, USERS
from auxin_api.utils.clock import utcnow


def normalize_email(email) -> str:
    return str(email or "").strip().lower()


class AccountState(str, Enum):
    NOT_FOUND = "not_found"
    PENDING = "pending"            # PendingUser awaiting its first verification
    UNVERIFIED = "unverified"      # User record that never verified (imported data)
    VERIFIED = "verified"


@dataclass(frozen=True)
class AccountLookup:
    email: str
    state: AccountState
    record: Optional[dict] = None

    @property
    def collection(self) -> Optional[str]:
        if self.state is AccountState.PENDING:
            return PENDING_USERS
        if self.state in (AccountState.UNVERIFIED, AccountState.VERIFIED):
            return USERS
        return None

    @property
    def is_user(self) -> bool:
        return self.collection == USERS


class IdentityStore:
    def __init__(self, pool, clock=utcnow):
        self._pool = pool
        self._clock = clock

    async def _collection(self, name: str):
        db = await self._pool.get_database()
        return db[name]

    async def resolve(self, email) -> AccountLookup:
        """A User wins over a PendingUser when both exist mid-promotion."""
        normalized = normalize_email(email)
        users = await self._collection(USERS)
        user = await users.find_one({"email": normalized})
        if user:
            state = AccountState.VERIFIED if user.get("isEmailVerified") else AccountState.UNVERIFIED
            return AccountLookup(normalized, state, user)

        pending_users = await self._collection(PENDING_USERS)
        pending = await pending_users.find_one({"email": normalized})
        if pending:
            return AccountLookup(normalized, AccountState.PENDING, pending)
        return AccountLookup(normalized, AccountState.NOT_FOUND)

    async def find_user_by_id(self, user_id) -> Optional[dict]:
        if not ObjectId.is_valid(str(user_id)):
            return None
        users = await self._collection(USERS)
        return await users.find_one({"_id": ObjectId(str(user_id))})

    async def find_user_for_oauth(self, email: str, google_id: str) -> Optional[dict]:
        users = await self._collection(USERS)
        return await users.find_one({"$or": [{"email": normalize_email(email)}, {"googleId": google_id}]})

    async def create_user(self, name: str, email: str, password: str = None, google_id: str = None,
                          avatar: str = "", is_email_verified: bool = False) -> dict:
        now = self._clock()
        doc = {
            "name": name.strip(),
            "email": normalize_email(email),
            "avatar": avatar or "",
            "isEmailVerified": is_email_verified,
            "createdAt": now,
            "updatedAt": now,
        }
        if password:
            doc["password"] = password
        if google_id:
            doc["googleId"] = google_id

        users = await self._collection(USERS)
        result = await users.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def update_user(self, user_id, set_fields: dict = None, unset_fields: list = None) -> Optional[dict]:
        update = {"$set": dict(set_fields or {}, updatedAt=self._clock())}
        if unset_fields:
            update["$unset"] = {field: "" for field in unset_fields}
        users = await self._collection(USERS)
        return await users.find_one_and_update(
            {"_id": user_id}, update, return_document=ReturnDocument.AFTER
        )

    async def upsert_pending(self, name: str, email: str, password_hash: str) -> dict:
        """Last write wins on the email key; a repeat registration replaces the
        name and password and invalidates any code already issued."""
        now = self._clock()
        normalized = normalize_email(email)
        pending_users = await self._collection(PENDING_USERS)
        return await pending_users.find_one_and_update(
            {"email": normalized},
            {
                "$set": {
                    "name": name.strip(),
                    "email": normalized,
                    "password": password_hash,
                    "updatedAt": now,
                },
                "$unset": {"emailVerificationCode": "", "emailVerificationExpires": ""},
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def set_verification_code(self, lookup: AccountLookup, code: str, expires) -> None:
        collection = await self._collection(lookup.collection)
        await collection.update_one(
            {"_id": lookup.record["_id"]},
            {"$set": {
                "emailVerificationCode": code,
                "emailVerificationExpires": expires,
                "updatedAt": self._clock(),
            }},
        )

    async def mark_verified(self, user_id) -> Optional[dict]:
        return await self.update_user(
            user_id,
            {"isEmailVerified": True},
            ["emailVerificationCode", "emailVerificationExpires"],
        )

    async def delete_pending(self, pending_id) -> None:
        pending_users = await self._collection(PENDING_USERS)
        await pending_users.delete_one({"_id": pending_id})
