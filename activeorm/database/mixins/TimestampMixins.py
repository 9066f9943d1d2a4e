from datetime import datetime
from typing import Any

from activeorm.database.mixins.AttributeHandlers import DefaultValueOnInsert, SetValueOnUpdate


def now(event=None) -> datetime:
    return datetime.now()


class DefaultDateTimeOnInsert(DefaultValueOnInsert):
    """Stamp created_at / updated_at on insert unless already set."""

    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(value if value is not None else now, *(property_names or ("created_at", "updated_at")))


class SetDateTimeOnUpdate(SetValueOnUpdate):
    def __init__(self, value: Any = None, *property_names: str):
        super().__init__(value if value is not None else now, *(property_names or ("updated_at",)))
