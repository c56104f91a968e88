from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, Field, ConfigDict, PlainSerializer


def utcnow() -> datetime:
    """Naive UTC now; every stored timestamp is naive UTC."""
    return as_naive_utc(datetime.now(timezone.utc))


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    # BSON dates carry millisecond precision
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


UTCDateTime = Annotated[datetime, AfterValidator(as_naive_utc)]

# Rates are exact decimals in memory and strings in MongoDB
RateDecimal = Annotated[Decimal, PlainSerializer(lambda value: str(value), return_type=str)]


class PyObjectId(ObjectId):
    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any):
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(
            cls.validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                str, when_used="json"
            ),
        )

    @classmethod
    def validate(cls, value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        raise ValueError("Invalid ObjectId")


class MongoModel(BaseModel):
    id: PyObjectId = Field(default_factory=PyObjectId, alias="_id")
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    def to_document(self) -> dict:
        """Dump for MongoDB: `_id` key, ObjectIds and datetimes kept native."""
        return self.model_dump(by_alias=True)
