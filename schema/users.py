"""Contains the schema definition for user records and credential requests
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from typing import Annotated


class UserRecord(BaseModel):
    """A user as held by the directory.

    Records are values: `token` and `token_expiry` only change through the
    directory's atomic token operations, which hand back a new record.
    """

    model_config = ConfigDict(frozen=True)

    username: Annotated[str, Field(min_length=1)]
    display_name: str
    secret_hash: str
    token: Annotated[str | None, Field(default=None)]  # stateful mode only
    token_expiry: Annotated[datetime | None, Field(default=None)]  # stateful mode only


class RefreshTokenRequest(BaseModel):
    """Describes the structure of the credential submission.

    Both fields are optional here so a missing value is reported as
    missing credentials rather than a schema error.
    """

    user: Annotated[str | None, Field(default=None, max_length=128)]
    password: Annotated[str | None, Field(default=None, max_length=256)]
