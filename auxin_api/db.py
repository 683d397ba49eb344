import asyncio
import logging
import re

import certifi
from pymongo import ASCENDING, AsyncMongoClient

logger = logging.getLogger(__name__)

USERS = "users"
PENDING_USERS = "pendingusers"
APPOINTMENTS = "appointments"

# Appointment statuses that hold a slot
ACTIVE_STATUSES = ["pending", "confirmed"]
ACTIVE_FILTER = {"status": {"$in": ACTIVE_STATUSES}}


def mask_uri(uri: str) -> str:
    return re.sub(r":([^:@/]+)@", ":****@", uri)


def default_client_factory(uri: str) -> AsyncMongoClient:
    options = {
        "serverSelectionTimeoutMS": 10000,
        "socketTimeoutMS": 45000,
        "maxPoolSize": 10,
        "minPoolSize": 5,
    }
    # Atlas / TLS URIs need a CA bundle on slim containers
    if uri.startswith("mongodb+srv://") or "tls=true" in uri.lower() or "ssl=true" in uri.lower():
        options["tlsCAFile"] = certifi.where()
    return AsyncMongoClient(uri, **options)


async def ensure_indexes(db) -> None:
    await db[USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")
    await db[USERS].create_index([("googleId", ASCENDING)], sparse=True, name="googleId_sparse")

    await db[PENDING_USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")

    # The storage-level double-booking guard. Cancelled appointments are
    # outside the partial filter so their slot can be booked again.
    await db[APPOINTMENTS].create_index(
        [("date", ASCENDING), ("time", ASCENDING)],
        unique=True,
        partialFilterExpression=ACTIVE_FILTER,
        name="active_slot_unique",
    )
    await db[APPOINTMENTS].create_index(
        [("userId", ASCENDING), ("date", ASCENDING)],
        unique=True,
        partialFilterExpression=ACTIVE_FILTER,
        name="active_user_day_unique",
    )
    await db[APPOINTMENTS].create_index([("userEmail", ASCENDING)], name="userEmail")
    await db[APPOINTMENTS].create_index([("status", ASCENDING)], name="status")


class MongoPool:
    """Process-wide database handle with single-flight initialization.

    Concurrent first callers all await the same connect task. A failed
    connect clears the cached task so the next caller starts a fresh attempt
    instead of replaying the failure.
    """

    def __init__(self, uri: str, db_name: str, client_factory=default_client_factory):
        self.uri = uri
        self.db_name = db_name
        self._client_factory = client_factory
        self._client = None
        self._db = None
        self._connecting = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def get_database(self):
        if self._db is not None:
            return self._db

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect())
            self._connecting.add_done_callback(self._connect_finished)

        # shield: a cancelled request must not cancel everyone else's connect
        db = await asyncio.shield(self._connecting)

        self._db = db
        return db

    def _connect_finished(self, task) -> None:
        # Runs even when every waiter was cancelled, so a failure is never replayed.
        if task.cancelled() or task.exception() is not None:
            if self._connecting is task:
                self._connecting = None

    async def _connect(self):
        if not self.uri:
            raise RuntimeError(
                "Missing MongoDB connection string. Set one of MONGODB_URI, "
                "MONGODB_URI_PROD, DATABASE_URL or MONGO_URI."
            )

        logger.info("Connecting to MongoDB at %s", mask_uri(self.uri))
        client = self._client_factory(self.uri)
        try:
            await client.admin.command("ping")
            db = client[self.db_name]
            await ensure_indexes(db)
        except Exception as e:
            logger.error("MongoDB connection failed: %s", e)
            await client.close()
            raise

        self._client = client
        logger.info("Connected to MongoDB database %s", self.db_name)
        return db

    async def ping(self) -> bool:
        try:
            await self.get_database()
            await self._client.admin.command("ping")
            return True
        except Exception:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._db = None
        self._connecting = None
