"""
Course model implementation.

Courses reference their instructor, enrolled students and lectures by id.
The lecture count is derived from the lecture list whenever the course is saved.
"""

from enum import Enum
from typing import Any, ClassVar, List, Optional, Tuple

from pydantic import Field, computed_field, field_validator
from pydantic_core import PydanticCustomError

from .base import MongoDocument, ObjectIdStr, check_max_length, check_required, strip_string


class CourseLevel(str, Enum):
    """Course difficulty level."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Course(MongoDocument):
    """
    Course model.

    Attributes:
        title: Course title (required, at most 100 characters)
        subtitle: Optional subtitle (at most 200 characters)
        description: Free-form description
        category: Course category (required)
        level: Difficulty level (defaults to beginner)
        price: Price, never negative (required)
        thumbnail: Thumbnail URL or path (required)
        enrolled_students: Ids of enrolled users
        lectures: Ids of the course's lectures
        instructor: Id of the instructing user (required)
        is_published: Whether the course is visible to students
        total_duration: Total running time of all lectures
        total_lectures: Number of lectures, recomputed on save
    """

    COLLECTION: ClassVar[str] = 'courses'
    OBJECT_ID_FIELDS: ClassVar[Tuple[str, ...]] = ('enrolled_students', 'lectures', 'instructor')

    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    category: str
    level: CourseLevel = CourseLevel.BEGINNER
    price: float
    thumbnail: str
    enrolled_students: List[ObjectIdStr] = Field(default_factory=list)
    lectures: List[ObjectIdStr] = Field(default_factory=list)
    instructor: ObjectIdStr
    is_published: bool = False
    total_duration: float = 0
    total_lectures: int = 0

    @field_validator('title', 'subtitle', 'description', mode='before')
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return strip_string(value)

    @field_validator('title')
    @classmethod
    def _validate_title(cls, value: str) -> str:
        check_required(value, 'Course title is required')
        return check_max_length(value, 100, 'Course title can not exceed 100 characters')

    @field_validator('subtitle')
    @classmethod
    def _validate_subtitle(cls, value: Optional[str]) -> Optional[str]:
        return check_max_length(value, 200, 'Course subtitle can not exceed 200 characters')

    @field_validator('category')
    @classmethod
    def _validate_category(cls, value: str) -> str:
        return check_required(value, 'Course category is required')

    @field_validator('thumbnail')
    @classmethod
    def _validate_thumbnail(cls, value: str) -> str:
        return check_required(value, 'Course thumbnail is required')

    @field_validator('level', mode='before')
    @classmethod
    def _validate_level(cls, value: Any) -> Any:
        if isinstance(value, CourseLevel):
            return value
        if value not in [level.value for level in CourseLevel]:
            raise PydanticCustomError('enum', 'please select a valid course level')
        return value

    @field_validator('price')
    @classmethod
    def _validate_price(cls, value: float) -> float:
        if value < 0:
            raise PydanticCustomError('greater_than_equal', 'Course price can not be less than 0')
        return value

    @computed_field
    @property
    def average_rating(self) -> float:
        # Ratings are not modelled yet
        return 0.0

    def prepare_for_save(self) -> None:
        """Recompute the lecture count, then stamp the update time."""
        self.total_lectures = len(self.lectures)
        super().prepare_for_save()

    def __str__(self) -> str:
        return f"<Course {self.title}>"
