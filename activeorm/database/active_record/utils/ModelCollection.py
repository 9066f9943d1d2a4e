from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from activeorm.database.RelationPopulator import index_models, model_value

T = TypeVar('T')


class ModelCollection(list):
    """
    List of records (or typed row dicts in array mode) returned by
    ActiveQuery.all().
    """

    def __init__(self, items: Iterable[T] = ()):
        super().__init__(items)

    def to_list_dict(self, relations: bool = True) -> list[dict[str, Any]]:
        return [dict(item) if isinstance(item, dict) else item.to_dict(relations) for item in self]

    def pluck(self, column: str) -> list[Any]:
        """Values of one column, in collection order"""
        return [model_value(item, column) for item in self]

    def index_by(self, column: Union[str, Callable]) -> dict:
        return index_models(self, column)

    def where(self, callback: Callable[[Any], bool]) -> 'ModelCollection':
        """Filter the collection using a callback"""
        return ModelCollection(item for item in self if callback(item))

    def first(self) -> Optional[T]:
        return self[0] if self else None

    def last(self) -> Optional[T]:
        return self[-1] if self else None

    def take(self, n: int = 1) -> 'ModelCollection':
        return ModelCollection(self[:n])
