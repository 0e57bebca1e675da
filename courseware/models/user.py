"""
User model implementation.

Passwords are accepted in plain text, validated, and replaced by a bcrypt
hash when the user is prepared for saving. Password reset tokens are handed
out once in raw form; only their SHA-256 digest is kept on the user.
"""

import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

import bcrypt
from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_core import PydanticCustomError

from .base import (
    MongoDocument,
    ObjectIdStr,
    UtcDatetime,
    check_max_length,
    check_required,
    strip_string,
    to_object_id,
    utcnow
)

EMAIL_PATTERN = re.compile(
    r"[a-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z0-9](?:[a-z0-9-]*[a-z0-9])?"
)

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 40
BCRYPT_ROUNDS = 10
RESET_TOKEN_BYTES = 20
RESET_TOKEN_TTL = timedelta(minutes=10)


class UserRole(str, Enum):
    """User role enumeration."""
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class EnrolledCourse(BaseModel):
    """A course the user is enrolled in and when they enrolled."""
    course: ObjectIdStr
    enrolled_at: UtcDatetime = Field(default_factory=utcnow)


class User(MongoDocument):
    """
    User model with role-based access, enrollments and password reset support.

    The stored password hash lives in ``hashed_password`` (``password`` in the
    stored document) and is only present when explicitly loaded.
    ``password`` on the model is the pending plain-text value, never
    serialized.

    Attributes:
        name: Display name (required, at most 40 characters)
        email: Unique, lowercased email address
        password: Plain password awaiting hashing (8-40 characters)
        hashed_password: Bcrypt hash of the password
        role: student, instructor or admin
        avatar: Avatar image
        bio: Short biography (at most 160 characters)
        enrolled_courses: Enrollments with timestamps
        created_courses: Ids of courses this user created
        reset_password_token: SHA-256 digest of the outstanding reset token
        reset_password_expiry: When the reset token stops being valid
        last_active: Last time the user was seen
    """

    COLLECTION: ClassVar[str] = 'users'
    OBJECT_ID_FIELDS: ClassVar[Tuple[str, ...]] = ('created_courses',)
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = (
        'hashed_password',
        'reset_password_token',
        'reset_password_expiry'
    )

    name: str
    email: str
    password: Optional[str] = Field(default=None, exclude=True, repr=False)
    hashed_password: Optional[str] = Field(default=None, repr=False)
    role: UserRole = UserRole.STUDENT
    avatar: str = 'default.jpg'
    bio: Optional[str] = None
    enrolled_courses: List[EnrolledCourse] = Field(default_factory=list)
    created_courses: List[ObjectIdStr] = Field(default_factory=list)
    reset_password_token: Optional[str] = Field(default=None, repr=False)
    reset_password_expiry: Optional[UtcDatetime] = None
    last_active: UtcDatetime = Field(default_factory=utcnow)

    @field_validator('name', 'email', mode='before')
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return strip_string(value)

    @field_validator('name')
    @classmethod
    def _validate_name(cls, value: str) -> str:
        check_required(value, 'username is required')
        return check_max_length(value, 40, 'username cannot exceed 40 characters')

    @field_validator('email')
    @classmethod
    def _validate_email(cls, value: str) -> str:
        check_required(value, 'email is required')
        value = value.lower()
        if not EMAIL_PATTERN.fullmatch(value):
            raise PydanticCustomError('value_error', 'Please enter a valid email')
        return value

    @field_validator('password')
    @classmethod
    def _validate_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if len(value) < PASSWORD_MIN_LENGTH:
            raise PydanticCustomError(
                'string_too_short',
                f'password must be at least {PASSWORD_MIN_LENGTH} characters'
            )
        check_max_length(value, PASSWORD_MAX_LENGTH, f'password cannot exceed {PASSWORD_MAX_LENGTH} characters')
        # bcrypt only looks at the first 72 bytes
        if len(value.encode('utf-8')) > 72:
            raise PydanticCustomError('string_too_long', 'password cannot exceed 72 bytes')
        return value

    @field_validator('role', mode='before')
    @classmethod
    def _validate_role(cls, value: Any) -> Any:
        if isinstance(value, UserRole):
            return value
        if value not in [role.value for role in UserRole]:
            raise PydanticCustomError('enum', 'please select a valid role')
        return value

    @field_validator('bio')
    @classmethod
    def _validate_bio(cls, value: Optional[str]) -> Optional[str]:
        return check_max_length(value, 160, 'bio cannot exceed 160 characters')

    @computed_field
    @property
    def total_enrolled_courses(self) -> int:
        return len(self.enrolled_courses)

    @property
    def has_pending_password(self) -> bool:
        return self.password is not None

    def prepare_for_save(self) -> None:
        """
        Hash a pending plain password and stamp the update time.

        Raises:
            ValueError: If a new user has no password at all
        """
        if self.password is not None:
            self.hashed_password = self._hash_password(self.password)
            self.password = None
        elif self.is_new and self.hashed_password is None:
            raise ValueError("password is required")
        super().prepare_for_save()

    @staticmethod
    def _hash_password(password: str) -> str:
        """Hash a plain text password using bcrypt."""
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def compare_password(self, entered_password: str) -> bool:
        """
        Check a plain password against the stored hash.

        Raises:
            ValueError: If the hash was not loaded with the user
        """
        if not self.hashed_password:
            raise ValueError("Password hash not loaded; fetch the user with include_password=True")
        candidate = entered_password.encode('utf-8')
        if len(candidate) > 72:
            return False
        return bcrypt.checkpw(candidate, self.hashed_password.encode('utf-8'))

    @staticmethod
    def hash_reset_token(token: str) -> str:
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    def get_reset_password_token(self) -> str:
        """
        Generate a password reset token.

        Stores the token's SHA-256 digest and an expiry ten minutes from now.

        Returns:
            The raw token, to be delivered to the user
        """
        reset_token = secrets.token_hex(RESET_TOKEN_BYTES)
        self.reset_password_token = self.hash_reset_token(reset_token)
        self.reset_password_expiry = utcnow() + RESET_TOKEN_TTL
        return reset_token

    def verify_reset_password_token(self, token: str, now: Optional[datetime] = None) -> bool:
        """True if ``token`` matches the outstanding reset token and has not expired."""
        if not self.reset_password_token or not self.reset_password_expiry:
            return False
        if (now or utcnow()) >= self.reset_password_expiry:
            return False
        return hmac.compare_digest(self.hash_reset_token(token), self.reset_password_token)

    def clear_reset_password_token(self) -> None:
        self.reset_password_token = None
        self.reset_password_expiry = None

    def touch_last_active(self) -> datetime:
        """Set last_active to now and return it; persisting is up to the caller."""
        self.last_active = utcnow()
        return self.last_active

    def is_enrolled_in(self, course_id: str) -> bool:
        return any(enrollment.course == course_id for enrollment in self.enrolled_courses)

    def to_document(self) -> Dict[str, Any]:
        document = super().to_document()
        document.pop('hashed_password', None)
        if self.hashed_password is not None:
            document['password'] = self.hashed_password
        document['enrolled_courses'] = [
            {'course': to_object_id(e.course), 'enrolled_at': e.enrolled_at}
            for e in self.enrolled_courses
        ]
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> 'User':
        data = dict(document)
        if 'password' in data:
            data['hashed_password'] = data.pop('password')
        return cls.model_validate(data)

    def __str__(self) -> str:
        return f"<User {self.email}>"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"
