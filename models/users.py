from datetime import datetime

from pydantic import Field
from typing import Annotated, Optional

import pymongo
from beanie import Document, Indexed

from schema.users import UserRecord
from utils.clock import as_utc


class UserDocument(Document):
    """Persisted user record for the MongoDB directory.
    """
    username: Annotated[str, Indexed(unique=True), Field(min_length=1, max_length=128)]
    display_name: Annotated[str, Field(max_length=100)]
    secret_hash: str  # passlib bcrypt hash
    token: Annotated[Optional[str], Indexed(index_type=pymongo.ASCENDING)] = None  # current stateful token
    token_expiry: Optional[datetime] = None  # absolute UTC expiry of `token`

    def to_record(self) -> UserRecord:
        """Converts the document to the directory's value type."""
        return UserRecord(
            username=self.username,
            display_name=self.display_name,
            secret_hash=self.secret_hash,
            token=self.token,
            token_expiry=as_utc(self.token_expiry),
        )

    class Settings:
        """Beanie document settings."""
        name = "users"
