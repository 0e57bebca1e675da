"""
User CRUD manager for Courseware.

Persists users in the ``users`` collection, applying the save hook (password
hashing) before every write and keeping the password hash out of default reads.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from courseware.database.connection_manager import DatabaseConnectionError, DatabaseConnectionManager
from courseware.models.base import utcnow
from courseware.models.user import User, UserRole

logger = logging.getLogger(__name__)


class UserStoreError(Exception):
    """Base exception for user store operations."""
    pass


class UserNotFoundError(UserStoreError):
    """Raised when a user is not found."""
    pass


class UserAlreadyExistsError(UserStoreError):
    """Raised when attempting to create a user that already exists."""
    pass


class UserValidationError(UserStoreError):
    """Raised when user data validation fails."""
    pass


# Password hash is only returned when explicitly requested
_WITHOUT_PASSWORD = {'password': False}


def _parse_id(user_id: str) -> ObjectId:
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        raise UserValidationError(f"Invalid user id: {user_id}")


class UserCRUDManager:
    """Manage user persistence, password hashing and password reset tokens."""

    def __init__(self, db_manager: DatabaseConnectionManager):
        """
        Initialize user CRUD manager.

        Args:
            db_manager: Database connection manager instance
        """
        self._db = db_manager

    def _collection(self):
        try:
            return self._db.get_collection(User.COLLECTION)
        except DatabaseConnectionError as e:
            raise UserStoreError(f"User store unavailable: {e}")

    async def ensure_indexes(self) -> None:
        """Create the unique email index and the reset token lookup index."""
        collection = self._collection()
        try:
            await collection.create_index('email', unique=True)
            await collection.create_index('reset_password_token', sparse=True)
        except PyMongoError as e:
            raise UserStoreError(f"Failed to create user indexes: {e}")
        logger.info("User indexes ensured")

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        role: UserRole = UserRole.STUDENT,
        bio: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> User:
        """
        Create a new user.

        Args:
            name: Display name
            email: Email address (stored lowercased)
            password: Plain password, hashed before it is stored
            role: User role
            bio: Optional biography
            avatar: Optional avatar, defaults to the placeholder image

        Returns:
            Created User object (without plain password)

        Raises:
            UserAlreadyExistsError: If the email is taken
            UserValidationError: If validation fails
        """
        data: Dict[str, Any] = {
            'name': name,
            'email': email,
            'password': password,
            'role': role,
            'bio': bio
        }
        if avatar is not None:
            data['avatar'] = avatar

        try:
            user = User(**data)
        except ValidationError as e:
            raise UserValidationError(f"Invalid user data: {e}")

        return await self.save_user(user)

    async def save_user(self, user: User) -> User:
        """
        Insert a new user or update an existing one.

        Runs the save hook first, so a pending plain password is hashed.
        Fields that were not loaded (the password hash) are left untouched.

        Raises:
            UserAlreadyExistsError: If the email is taken by another user
            UserNotFoundError: If an existing user was deleted meanwhile
            UserValidationError: If a new user has no password
        """
        try:
            user.prepare_for_save()
        except (ValueError, ValidationError) as e:
            raise UserValidationError(str(e))

        document = user.to_document()
        collection = self._collection()

        try:
            if user.is_new:
                result = await collection.insert_one(document)
                user.id = str(result.inserted_id)
                logger.info(f"Created user {user.id} ({user.email})")
                return user

            document.pop('_id')
            result = await collection.update_one({'_id': ObjectId(user.id)}, {'$set': document})
        except DuplicateKeyError:
            raise UserAlreadyExistsError(f"User with email {user.email} already exists")
        except PyMongoError as e:
            logger.error(f"Error saving user {user.email}: {e}")
            raise UserStoreError(f"Failed to save user: {e}")

        if result.matched_count == 0:
            raise UserNotFoundError(f"User {user.id} not found")
        return user

    async def _find_one(self, query: Dict[str, Any], include_password: bool) -> Optional[User]:
        projection = None if include_password else _WITHOUT_PASSWORD
        try:
            document = await self._collection().find_one(query, projection)
        except PyMongoError as e:
            logger.error(f"Error querying users with {query}: {e}")
            raise UserStoreError(f"Failed to query users: {e}")
        return User.from_document(document) if document else None

    async def get_user_by_id(self, user_id: str, include_password: bool = False) -> Optional[User]:
        """
        Get user by ID.

        Args:
            user_id: User's ObjectId as a string
            include_password: Also load the password hash

        Returns:
            User object if found, None if not found
        """
        return await self._find_one({'_id': _parse_id(user_id)}, include_password)

    async def get_user_by_email(self, email: str, include_password: bool = False) -> Optional[User]:
        """Get user by email address (case-insensitive)."""
        return await self._find_one({'email': email.strip().lower()}, include_password)

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user when the email and password match, else None."""
        user = await self.get_user_by_email(email, include_password=True)
        if user is None or not user.compare_password(password):
            return None
        await self.update_last_active(user)
        return user

    async def update_last_active(self, user: User) -> datetime:
        """
        Record that the user was active now.

        Only ``last_active`` is written; the rest of the user is not
        revalidated or saved.
        """
        if user.is_new:
            raise UserValidationError("Cannot update last_active on an unsaved user")

        last_active = user.touch_last_active()
        try:
            await self._collection().update_one(
                {'_id': ObjectId(user.id)},
                {'$set': {'last_active': last_active}}
            )
        except PyMongoError as e:
            raise UserStoreError(f"Failed to update last_active for user {user.id}: {e}")
        return last_active

    async def create_password_reset_token(self, email: str) -> str:
        """
        Issue a password reset token for the user with ``email``.

        Returns:
            The raw token; only its digest is stored

        Raises:
            UserNotFoundError: If no user has that email
        """
        user = await self.get_user_by_email(email)
        if user is None:
            raise UserNotFoundError(f"User with email {email} not found")

        token = user.get_reset_password_token()
        try:
            await self._collection().update_one(
                {'_id': ObjectId(user.id)},
                {'$set': {
                    'reset_password_token': user.reset_password_token,
                    'reset_password_expiry': user.reset_password_expiry
                }}
            )
        except PyMongoError as e:
            raise UserStoreError(f"Failed to store reset token: {e}")

        logger.info(f"Issued password reset token for user {user.id}")
        return token

    async def get_user_by_reset_token(self, token: str) -> Optional[User]:
        """Find the user holding an unexpired reset token."""
        return await self._find_one(
            {
                'reset_password_token': User.hash_reset_token(token),
                'reset_password_expiry': {'$gt': utcnow()}
            },
            include_password=False
        )

    async def reset_password(self, token: str, new_password: str) -> User:
        """
        Set a new password using a reset token and invalidate the token.

        Raises:
            UserValidationError: If the token is invalid or expired, or the
                new password is not acceptable
        """
        user = await self.get_user_by_reset_token(token)
        if user is None:
            raise UserValidationError("Password reset token is invalid or has expired")

        try:
            user.password = new_password
        except ValidationError as e:
            raise UserValidationError(f"Invalid password: {e}")

        user.clear_reset_password_token()
        await self.save_user(user)
        logger.info(f"Password reset for user {user.id}")
        return user

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete a user.

        Returns:
            True if the user was deleted, False if it did not exist
        """
        try:
            result = await self._collection().delete_one({'_id': _parse_id(user_id)})
        except PyMongoError as e:
            raise UserStoreError(f"Failed to delete user {user_id}: {e}")
        return result.deleted_count > 0
