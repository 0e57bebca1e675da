"""Persistence services for Courseware."""

from .course_crud_manager import (
    CourseCRUDManager,
    CourseNotFoundError,
    CourseStoreError,
    CourseValidationError
)
from .user_crud_manager import (
    UserAlreadyExistsError,
    UserCRUDManager,
    UserNotFoundError,
    UserStoreError,
    UserValidationError
)

__all__ = [
    'CourseCRUDManager',
    'CourseNotFoundError',
    'CourseStoreError',
    'CourseValidationError',
    'UserAlreadyExistsError',
    'UserCRUDManager',
    'UserNotFoundError',
    'UserStoreError',
    'UserValidationError'
]
