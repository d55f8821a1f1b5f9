"""Credential validation against the user directory.
"""
import logfire

from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from schema.users import UserRecord
from services.directory import UserDirectory
from security.errors import MissingCredentials, UserNotFound, SecretIncorrect


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_secret(plain_secret: str, secret_hash: str) -> bool:
    """Verifies that `plain_secret` matches `secret_hash`.

    The digest comparison inside passlib is constant time. A stored value
    passlib cannot identify never matches.

    Args:
        plain_secret (str): The submitted secret.
        secret_hash (str): The stored bcrypt hash.

    Returns:
        bool: True if they match, False otherwise.
    """
    try:
        return pwd_context.verify(plain_secret, secret_hash)
    except ValueError:
        logfire.error("Stored secret hash could not be identified")
        return False


def hash_secret(secret: str) -> str:
    """Generates a bcrypt hash for the given secret.

    Args:
        secret (str): The plain text secret to hash.

    Returns:
        str: The hashed secret.
    """
    return pwd_context.hash(secret)


class CredentialValidator:
    """Checks a submitted (user, secret) pair against the directory."""

    def __init__(self, directory: UserDirectory):
        self.directory = directory

    async def validate(self, username: str | None, secret: str | None) -> UserRecord:
        """Validates credentials and returns the matching user.

        Args:
            username (str | None): Submitted username.
            secret (str | None): Submitted secret.

        Raises:
            MissingCredentials: Either field is missing or empty.
            UserNotFound: No user has this username.
            SecretIncorrect: The secret does not match.
            StorageError: The directory failed or timed out.

        Returns:
            UserRecord: The authenticated user.
        """
        if not username or not secret:
            raise MissingCredentials()

        user = await self.directory.find_by_username(username)

        if user is None:
            # Spend the same hashing time as a real check
            await run_in_threadpool(pwd_context.dummy_verify)
            logfire.warning(f"Credential check for unknown user {username}")
            raise UserNotFound()

        if not await run_in_threadpool(verify_secret, secret, user.secret_hash):
            logfire.warning(f"Incorrect secret submitted for user {username}")
            raise SecretIncorrect()

        return user
