from typing import Any

from activeorm.database.ActiveRecord import ActiveRecord
from activeorm.database.Exceptions import ReadOnlyPropertyError, UnknownPropertyError, WriteOnlyPropertyError


class MagicActiveRecord(ActiveRecord):
    """
    ActiveRecord with attribute-style access:

        order.total          -> get_attribute("total")
        order.total = 10     -> set_attribute("total", 10)
        order.customer       -> relation("customer")
        order.full_name      -> get_full_name() when defined

    Setting a relation or a getter-only name raises ReadOnlyPropertyError.
    """
    __abstract__ = True

    def __getattribute__(self, name: str) -> Any:
        if not name.startswith("_") and name in type(self).__relations__:
            return self.relation(name)
        return super().__getattribute__(name)

    def __getattr__(self, name: str) -> Any:
        # only reached when regular lookup fails
        if name.startswith("_"):
            raise AttributeError(name)

        cls = type(self)
        if name in cls.__fields__:
            return self.get_attribute(name)

        getter = getattr(cls, f"get_{name}", None)
        if getter is not None:
            return getter(self)
        if hasattr(cls, f"set_{name}"):
            raise WriteOnlyPropertyError(cls, name)

        raise UnknownPropertyError(cls, name)

    def __setattr__(self, name: str, value: Any):
        if name.startswith("_"):
            super().__setattr__(name, value)
            return

        cls = type(self)
        if name in cls.__fields__:
            self.set_attribute(name, value)
            return
        if name in cls.__relations__:
            raise ReadOnlyPropertyError(cls, name)

        setter = getattr(cls, f"set_{name}", None)
        if setter is not None:
            setter(self, value)
            return
        if hasattr(cls, f"get_{name}"):
            raise ReadOnlyPropertyError(cls, name)

        raise UnknownPropertyError(cls, name)

    def __delattr__(self, name: str):
        if name in type(self).__fields__:
            self.set_attribute(name, None)
            return
        super().__delattr__(name)
