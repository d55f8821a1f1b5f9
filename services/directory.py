"""User directory: where user records and stateful tokens are kept.

Two implementations share one contract. `InMemoryUserDirectory` backs local
demos and tests; `MongoUserDirectory` stores records in MongoDB through
Beanie. Every operation is bounded by a timeout and reports backend trouble
as `StorageError`.
"""

import asyncio
import logfire

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Awaitable, Optional, TypeVar

from beanie.operators import Set
from beanie import UpdateResponse
from pymongo.errors import PyMongoError, DuplicateKeyError

from models.users import UserDocument
from schema.users import UserRecord
from security.errors import StorageError

T = TypeVar("T")


class UserDirectory(ABC):
    """Contract every user store fulfils."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: Awaitable[T], description: str) -> T:
        """Runs a backend operation under the configured timeout.

        Raises:
            StorageError: On timeout or any backend failure.
        """
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logfire.error(f"User directory timed out during {description}")
            raise StorageError() from e
        except PyMongoError as e:
            logfire.error(f"User directory failed during {description}: {type(e).__name__}")
            raise StorageError() from e

    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        return await self._bounded(self._find_by_username(username), "user lookup")

    async def find_by_token(self, token: str) -> Optional[UserRecord]:
        """Exact-equality lookup of the record currently holding `token`."""
        return await self._bounded(self._find_by_token(token), "token lookup")

    async def store_token(self, username: str, token: str, expiry: datetime) -> UserRecord:
        """Atomically replaces the user's token and expiry together.

        Raises:
            StorageError: If the user vanished or the write failed.
        """
        record = await self._bounded(self._store_token(username, token, expiry), "token write")
        if record is None:
            logfire.error(f"Token write matched no user record for {username}")
            raise StorageError()
        return record

    async def clear_token(self, username: str, token: str) -> bool:
        """Clears the user's token only if it still equals `token`.

        Returns:
            bool: True if a token was cleared.
        """
        return await self._bounded(self._clear_token(username, token), "token clear")

    async def add_user(self, record: UserRecord) -> UserRecord:
        """Provisions a new user.

        Raises:
            ValueError: If the username is already taken.
        """
        return await self._bounded(self._add_user(record), "user insert")

    @abstractmethod
    async def _find_by_username(self, username: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def _find_by_token(self, token: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def _store_token(
        self, username: str, token: str, expiry: datetime
    ) -> Optional[UserRecord]: ...

    @abstractmethod
    async def _clear_token(self, username: str, token: str) -> bool: ...

    @abstractmethod
    async def _add_user(self, record: UserRecord) -> UserRecord: ...


class InMemoryUserDirectory(UserDirectory):
    """Process-local directory guarded by a single lock."""

    def __init__(self, records: Optional[list[UserRecord]] = None, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds)
        self._records: dict[str, UserRecord] = {r.username: r for r in records or []}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def _locked(self):
        async with self._lock:
            yield self._records

    async def _find_by_username(self, username: str) -> Optional[UserRecord]:
        async with self._locked() as records:
            return records.get(username)

    async def _find_by_token(self, token: str) -> Optional[UserRecord]:
        async with self._locked() as records:
            for record in records.values():
                if record.token is not None and record.token == token:
                    return record
            return None

    async def _store_token(self, username: str, token: str, expiry: datetime) -> Optional[UserRecord]:
        async with self._locked() as records:
            current = records.get(username)
            if current is None:
                return None
            updated = current.model_copy(update={"token": token, "token_expiry": expiry})
            records[username] = updated
            return updated

    async def _clear_token(self, username: str, token: str) -> bool:
        async with self._locked() as records:
            current = records.get(username)
            if current is None or current.token != token:
                return False
            records[username] = current.model_copy(update={"token": None, "token_expiry": None})
            return True

    async def _add_user(self, record: UserRecord) -> UserRecord:
        async with self._locked() as records:
            if record.username in records:
                raise ValueError(f"User {record.username} already exists")
            records[record.username] = record
            return record


class MongoUserDirectory(UserDirectory):
    """Directory backed by the `users` collection.

    Each call checks a connection out of Motor's pool and hands it back when
    the call finishes, successful or not.
    """

    async def _find_by_username(self, username: str) -> Optional[UserRecord]:
        document = await UserDocument.find_one(UserDocument.username == username)
        return document.to_record() if document else None

    async def _find_by_token(self, token: str) -> Optional[UserRecord]:
        document = await UserDocument.find_one(UserDocument.token == token)
        return document.to_record() if document else None

    async def _store_token(self, username: str, token: str, expiry: datetime) -> Optional[UserRecord]:
        # * One $set on one document, so token and expiry can never be split
        document = await UserDocument.find_one(UserDocument.username == username).update(
            Set({UserDocument.token: token, UserDocument.token_expiry: expiry}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return document.to_record() if document else None

    async def _clear_token(self, username: str, token: str) -> bool:
        document = await UserDocument.find_one(
            UserDocument.username == username, UserDocument.token == token
        ).update(
            Set({UserDocument.token: None, UserDocument.token_expiry: None}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return document is not None

    async def _add_user(self, record: UserRecord) -> UserRecord:
        document = UserDocument(**record.model_dump())
        try:
            await document.insert()
        except DuplicateKeyError as e:
            raise ValueError(f"User {record.username} already exists") from e
        return document.to_record()
