"""Data models for Courseware."""

from .base import MongoDocument, ObjectIdStr
from .course import Course, CourseLevel
from .user import EnrolledCourse, User, UserRole

__all__ = [
    'MongoDocument',
    'ObjectIdStr',
    'Course',
    'CourseLevel',
    'EnrolledCourse',
    'User',
    'UserRole'
]
