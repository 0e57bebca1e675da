"""
Shared building blocks for MongoDB-backed models.

Documents keep ids as 24-character hex strings on the model and convert them
to bson ObjectIds only when producing the stored form.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic_core import PydanticCustomError

_OBJECT_ID_PATTERN = re.compile(r'^[0-9a-fA-F]{24}$')


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _coerce_object_id(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str) and _OBJECT_ID_PATTERN.match(value):
        return value.lower()
    raise PydanticCustomError(
        'object_id',
        'Invalid ObjectId: {value}',
        {'value': str(value)}
    )


def _ensure_utc(value: datetime) -> datetime:
    # The driver hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


ObjectIdStr = Annotated[str, BeforeValidator(_coerce_object_id)]
UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


def to_object_id(value: Optional[str]) -> Optional[ObjectId]:
    """Convert an id string to ObjectId, passing None through."""
    if value is None:
        return None
    return ObjectId(value)


def to_object_ids(values: Iterable[str]) -> List[ObjectId]:
    return [ObjectId(value) for value in values]


def strip_string(value: Any) -> Any:
    """Trim surrounding whitespace from strings, leave anything else alone."""
    return value.strip() if isinstance(value, str) else value


def check_max_length(value: Optional[str], limit: int, message: str) -> Optional[str]:
    if value is not None and len(value) > limit:
        raise PydanticCustomError('string_too_long', message)
    return value


def check_required(value: Optional[str], message: str) -> Optional[str]:
    if value is None or value == '':
        raise PydanticCustomError('missing', message)
    return value


class MongoDocument(BaseModel):
    """
    Base model for documents stored in MongoDB.

    Subclasses list their reference fields in ``OBJECT_ID_FIELDS`` so that
    ``to_document`` stores them as ObjectIds, and any fields that must never
    leave the service in ``SECRET_FIELDS``.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    OBJECT_ID_FIELDS: ClassVar[Tuple[str, ...]] = ()
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ()

    id: Optional[ObjectIdStr] = Field(default=None, alias='_id')
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)

    @property
    def is_new(self) -> bool:
        """True until the document has been assigned an id by a save."""
        return self.id is None

    def touch(self) -> None:
        self.updated_at = utcnow()

    def prepare_for_save(self) -> None:
        """Hook run before every insert or replace."""
        self.touch()

    def to_document(self) -> Dict[str, Any]:
        """
        Stored form of the model.

        Derived fields are left out and reference fields become ObjectIds.
        """
        exclude = set(type(self).model_computed_fields) | {'id'}
        document = self.model_dump(exclude=exclude)
        for name, value in document.items():
            if isinstance(value, Enum):
                document[name] = value.value

        for name in self.OBJECT_ID_FIELDS:
            value = document.get(name)
            if isinstance(value, list):
                document[name] = to_object_ids(value)
            elif value is not None:
                document[name] = to_object_id(value)

        if self.id is not None:
            document['_id'] = to_object_id(self.id)
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]):
        """Build a model from a stored document."""
        return cls.model_validate(dict(document))

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON-safe representation including derived fields, excluding secrets.
        """
        return self.model_dump(mode='json', exclude=set(self.SECRET_FIELDS))
