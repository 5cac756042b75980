from typing import Any, ClassVar, FrozenSet
from pydantic import BaseModel, model_validator


class PartialUpdate(BaseModel):
    """
    Base for PATCH payloads. Omitted fields are left as stored; an explicit
    null is accepted only for fields the stored document may leave empty.
    """

    non_nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            nulled = sorted(field for field in cls.non_nullable if field in data and data[field] is None)
            if nulled:
                raise ValueError(f"{', '.join(nulled)} cannot be null")
        return data
