"""
Authentication utilities for Appwrite JWT verification, plus the identity
provider used by invitations and account deletion.
"""
from typing import Optional
import jwt
from appwrite.client import Client
from appwrite.id import ID
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.core.exceptions import InvalidInputError, StorageError, UnauthenticatedError
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance


def verify_jwt_token(token: str) -> dict:
    """
    Decode an Appwrite JWT and return its payload.

    Appwrite signs its tokens; the signature is not re-checked here, the user
    is instead confirmed against Appwrite on first sight.

    Raises:
        UnauthenticatedError: If token is malformed or expired
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise UnauthenticatedError(f"Invalid token: {e}")


async def get_appwrite_user(user_id: str) -> dict:
    """
    Get user information from Appwrite.

    Raises:
        UnauthenticatedError: If user not found or API error
    """
    try:
        users = Users(AppwriteClient.get_client())
        return users.get(user_id)
    except AppwriteException as e:
        raise UnauthenticatedError(f"Failed to verify user: {e}")


class AppwriteIdentityProvider:
    """
    Creates and removes Appwrite accounts on behalf of the access layer.

    Invitation email delivery is left to Appwrite.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def users(self) -> Users:
        return Users(self._client or AppwriteClient.get_client())

    async def invite(self, email: str) -> str:
        """Create an Appwrite account for ``email`` and return its Appwrite id."""
        try:
            created = self.users.create(user_id=ID.unique(), email=email)
        except AppwriteException as e:
            if e.code == 409:
                raise InvalidInputError(f"A user with email {email} already exists")
            log.error("Appwrite invite failed for %s: %s", email, e)
            raise StorageError(f"Identity provider failed: {e}") from e
        log.info("Created Appwrite identity %s for %s", created["$id"], email)
        return created["$id"]

    async def delete(self, appwrite_id: str) -> None:
        try:
            self.users.delete(appwrite_id)
        except AppwriteException as e:
            if e.code == 404:
                log.warning("Appwrite identity %s already gone", appwrite_id)
                return
            log.error("Appwrite delete failed for %s: %s", appwrite_id, e)
            raise StorageError(f"Identity provider failed: {e}") from e


def get_identity_provider() -> AppwriteIdentityProvider:
    return AppwriteIdentityProvider()
