import json
from datetime import datetime, date, time
from decimal import Decimal
from typing import Any, Optional


class Field:
    """
    A declared column. Declared on the model class; the model collects them
    in declaration order and uses cast()/dump() to move values between the
    driver and Python.
    """

    def __init__(
        self,
        primary_key: bool = False,
        nullable: bool = True,
        unique: bool = False,
        default: Any = None,
        comment: str = None,
    ):
        self.primary_key = primary_key
        self.nullable = nullable
        self.unique = unique
        self.default = default
        self.comment = comment
        self.name: Optional[str] = None

    def __set_name__(self, owner, name):
        self.name = name

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r})"

    def default_value(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def cast(self, value: Any) -> Any:
        """Driver value -> Python value."""
        return value

    def dump(self, value: Any) -> Any:
        """Python value -> driver-bindable value."""
        return value

    def get_sql_type(self) -> str:
        raise NotImplementedError("Subclasses must implement get_sql_type()")


class IntegerField(Field):
    def __init__(self, auto_increment: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.auto_increment = auto_increment

    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        return int(value)

    def get_sql_type(self) -> str:
        base_type = "INTEGER"
        if self.auto_increment:
            base_type += " AUTO_INCREMENT"
        return base_type


class BigIntegerField(IntegerField):
    def get_sql_type(self) -> str:
        return "BIGINT"


class SmallIntegerField(IntegerField):
    def get_sql_type(self) -> str:
        return "SMALLINT"


class CharField(Field):
    def __init__(self, max_length: int = 255, **kwargs):
        super().__init__(**kwargs)
        self.max_length = max_length

    def cast(self, value: Any) -> Any:
        return None if value is None else str(value)

    def get_sql_type(self) -> str:
        return f"VARCHAR({self.max_length})"


class TextField(CharField):
    def get_sql_type(self) -> str:
        return "TEXT"


class DecimalField(Field):
    def __init__(self, precision: int = 10, scale: int = 2, **kwargs):
        super().__init__(**kwargs)
        self.precision = precision
        self.scale = scale

    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))

    def dump(self, value: Any) -> Any:
        return None if value is None else str(value)

    def get_sql_type(self) -> str:
        return f"DECIMAL({self.precision},{self.scale})"


class FloatField(Field):
    def cast(self, value: Any) -> Any:
        return None if value is None else float(value)

    def get_sql_type(self) -> str:
        return "FLOAT"


class BooleanField(Field):
    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "t", "yes")
        return bool(value)

    def dump(self, value: Any) -> Any:
        return None if value is None else int(bool(value))

    def get_sql_type(self) -> str:
        return "BOOLEAN"


class DateTimeField(Field):
    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value)
        return datetime.fromisoformat(str(value))

    def dump(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        return value

    def get_sql_type(self) -> str:
        return "DATETIME"


class DateField(Field):
    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])

    def dump(self, value: Any) -> Any:
        return value.isoformat() if isinstance(value, date) else value

    def get_sql_type(self) -> str:
        return "DATE"


class TimeField(Field):
    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, time):
            return value
        return time.fromisoformat(str(value))

    def dump(self, value: Any) -> Any:
        return value.isoformat() if isinstance(value, time) else value

    def get_sql_type(self) -> str:
        return "TIME"


class JsonField(Field):
    def cast(self, value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    def dump(self, value: Any) -> Any:
        return None if value is None else json.dumps(value)

    def get_sql_type(self) -> str:
        return "JSON"
