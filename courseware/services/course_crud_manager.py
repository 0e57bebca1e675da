"""
Course CRUD manager for Courseware.

Persists courses in the ``courses`` collection. The lecture count is
recomputed by the save hook on every write.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from courseware.database.connection_manager import DatabaseConnectionError, DatabaseConnectionManager
from courseware.models.base import utcnow
from courseware.models.course import Course, CourseLevel
from courseware.models.user import User

logger = logging.getLogger(__name__)


class CourseStoreError(Exception):
    """Base exception for course store operations."""


class CourseNotFoundError(CourseStoreError):
    """Raised when a course cannot be located."""


class CourseValidationError(CourseStoreError):
    """Raised when course data fails validation."""


def _parse_id(value: str, label: str = 'course') -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise CourseValidationError(f"Invalid {label} id: {value}")


class CourseCRUDManager:
    """Manage course CRUD operations, lectures and enrollments."""

    def __init__(self, database_manager: DatabaseConnectionManager):
        self._db = database_manager

    def _collection(self, name: str = Course.COLLECTION):
        try:
            return self._db.get_collection(name)
        except DatabaseConnectionError as e:
            raise CourseStoreError(f"Course store unavailable: {e}")

    async def create_course(
        self,
        instructor_id: str,
        title: str,
        category: str,
        price: float,
        thumbnail: str,
        subtitle: Optional[str] = None,
        description: Optional[str] = None,
        level: CourseLevel = CourseLevel.BEGINNER,
        is_published: bool = False
    ) -> Course:
        """
        Create a new course and record it on the instructor.

        Args:
            instructor_id: Id of the instructing user
            title: Course title
            category: Course category
            price: Course price
            thumbnail: Thumbnail URL or path
            subtitle: Optional subtitle
            description: Optional description
            level: Difficulty level
            is_published: Publish immediately

        Returns:
            Created Course instance

        Raises:
            CourseValidationError: If validation fails or the instructor does not exist
        """
        try:
            course = Course(
                instructor=instructor_id,
                title=title,
                category=category,
                price=price,
                thumbnail=thumbnail,
                subtitle=subtitle,
                description=description,
                level=level,
                is_published=is_published
            )
        except ValidationError as e:
            raise CourseValidationError(f"Invalid course data: {e}")

        instructor_oid = ObjectId(course.instructor)
        try:
            instructor = await self._collection(User.COLLECTION).find_one(
                {'_id': instructor_oid},
                {'_id': True}
            )
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to look up instructor {instructor_id}: {e}")
        if instructor is None:
            raise CourseValidationError(f"Instructor with ID {instructor_id} not found")

        await self.save_course(course)

        try:
            await self._collection(User.COLLECTION).update_one(
                {'_id': instructor_oid},
                {'$addToSet': {'created_courses': ObjectId(course.id)}}
            )
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to link course {course.id} to instructor: {e}")

        return course

    async def save_course(self, course: Course) -> Course:
        """
        Insert a new course or replace an existing one.

        Raises:
            CourseNotFoundError: If an existing course was deleted meanwhile
        """
        course.prepare_for_save()
        document = course.to_document()
        collection = self._collection()

        try:
            if course.is_new:
                result = await collection.insert_one(document)
                course.id = str(result.inserted_id)
                logger.info(f"Created course {course.id} ({course.title})")
                return course

            result = await collection.replace_one({'_id': document['_id']}, document)
        except PyMongoError as e:
            logger.error(f"Error saving course {course.title}: {e}")
            raise CourseStoreError(f"Failed to save course: {e}")

        if result.matched_count == 0:
            raise CourseNotFoundError(f"Course with ID {course.id} not found")
        return course

    async def get_course_by_id(self, course_id: str) -> Course:
        """
        Get a course by ID.

        Raises:
            CourseNotFoundError: If course not found
        """
        try:
            document = await self._collection().find_one({'_id': _parse_id(course_id)})
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to load course {course_id}: {e}")

        if not document:
            raise CourseNotFoundError(f"Course with ID {course_id} not found")
        return Course.from_document(document)

    async def list_courses(
        self,
        category: Optional[str] = None,
        level: Optional[CourseLevel] = None,
        published_only: bool = False,
        instructor_id: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> List[Course]:
        """
        List courses, newest first, with optional filters.

        A ``limit`` of 0 returns every matching course.

        Raises:
            CourseValidationError: If ``limit`` or ``skip`` is negative
        """
        if limit < 0 or skip < 0:
            raise CourseValidationError(f"limit and skip must not be negative, got limit={limit}, skip={skip}")

        query: Dict[str, Any] = {}
        if category:
            query['category'] = category
        if level:
            query['level'] = CourseLevel(level).value
        if published_only:
            query['is_published'] = True
        if instructor_id:
            query['instructor'] = _parse_id(instructor_id, 'instructor')

        try:
            cursor = self._collection().find(
                query,
                sort=[('created_at', -1)],
                skip=skip,
                limit=limit
            )
            documents = await cursor.to_list(length=limit or None)
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to list courses: {e}")

        return [Course.from_document(document) for document in documents]

    async def add_lecture(self, course_id: str, lecture_id: str) -> Course:
        """Append a lecture to the course; adding the same lecture twice is a no-op."""
        lecture_oid = _parse_id(lecture_id, 'lecture')
        course = await self.get_course_by_id(course_id)

        if str(lecture_oid) in course.lectures:
            return course

        course.lectures = course.lectures + [str(lecture_oid)]
        return await self.save_course(course)

    async def enroll_student(self, course_id: str, user_id: str) -> Course:
        """
        Enroll a user in a course.

        Adds the user to the course's students and the course to the user's
        enrollments. Enrolling twice leaves both unchanged.
        """
        user_oid = _parse_id(user_id, 'user')
        course = await self.get_course_by_id(course_id)

        if str(user_oid) not in course.enrolled_students:
            course.enrolled_students = course.enrolled_students + [str(user_oid)]
            await self.save_course(course)

        course_oid = ObjectId(course.id)
        try:
            await self._collection(User.COLLECTION).update_one(
                {'_id': user_oid, 'enrolled_courses.course': {'$ne': course_oid}},
                {'$push': {'enrolled_courses': {'course': course_oid, 'enrolled_at': utcnow()}}}
            )
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to record enrollment for user {user_id}: {e}")

        logger.info(f"Enrolled user {user_id} in course {course.id}")
        return course

    async def delete_course(self, course_id: str) -> bool:
        """
        Delete a course.

        Returns:
            True if the course was deleted, False if it did not exist
        """
        try:
            result = await self._collection().delete_one({'_id': _parse_id(course_id)})
        except PyMongoError as e:
            raise CourseStoreError(f"Failed to delete course {course_id}: {e}")
        return result.deleted_count > 0
