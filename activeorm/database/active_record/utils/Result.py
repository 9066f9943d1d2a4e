from typing import Any, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


class Ok(Generic[T]):
    __slots__ = ("value",)

    def __init__(self, value: T):
        self.value = value

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def __eq__(self, other):
        return isinstance(other, Ok) and other.value == self.value

    def __repr__(self):
        return f"Ok({self.value!r})"


class Err(Generic[E]):
    __slots__ = ("error",)

    def __init__(self, error: E):
        self.error = error

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        """Raise the wrapped error."""
        raise self.error

    def unwrap_or(self, default: Any) -> Any:
        return default

    def __eq__(self, other):
        return isinstance(other, Err) and type(other.error) is type(self.error) and str(other.error) == str(self.error)

    def __repr__(self):
        return f"Err({self.error!r})"


Result = Ok[T] | Err[E]
