from typing import Any, Callable, Optional, Self, Type, TypeVar, Union

from activeorm.core_services.Database import Database
from activeorm.database.ActiveQuery import ActiveQuery
from activeorm.database.Events import (
    AfterCreateQuery,
    AfterDelete,
    AfterInsert,
    AfterPopulate,
    AfterSave,
    AfterUpdate,
    AfterUpsert,
    BeforeCreateQuery,
    BeforeDelete,
    BeforeInsert,
    BeforePopulate,
    BeforeSave,
    BeforeUpdate,
    BeforeUpsert,
    Event,
    EventDispatcherProvider,
)
from activeorm.database.Exceptions import (
    ConfigurationError,
    InvalidCallError,
    StaleDataError,
    UnknownPropertyError,
    UnknownRelationError,
)
from activeorm.database.QueryBuilder import QueryBuilder, Raw
from activeorm.database.RelationPopulator import index_value
from activeorm.database.active_record.utils.Naming import singularize, split_camel_case, to_snake_case
from activeorm.database.active_record.utils.Result import Err, Ok, Result
from activeorm.database.fields.Fields import Field

T = TypeVar("T", bound="ActiveRecord")


class ActiveRecordMeta(type):
    def __init__(cls, name, bases, attrs):
        super().__init__(name, bases, attrs)

        fields: dict[str, Field] = {}
        relations: set[str] = set()
        for base in reversed(cls.__mro__[1:]):
            fields.update(getattr(base, "__fields__", {}))
            relations.update(getattr(base, "__relations__", ()))

        # fields are stored on the class as __fields__, not as attributes
        for attr_name, attr_value in list(attrs.items()):
            if isinstance(attr_value, Field):
                fields[attr_name] = attr_value
                delattr(cls, attr_name)
            elif getattr(attr_value, "__is_relation__", False):
                relations.add(attr_name)

        cls.__fields__ = fields
        cls.__relations__ = frozenset(relations)

        # Handle any @on(...) decorated methods
        listeners = []
        for attr_value in attrs.values():
            for event_type in getattr(attr_value, "__event_types__", ()):
                listeners.append((event_type, ActiveRecordMeta._bound_listener(attr_value)))
        cls.__listeners__ = listeners

    @staticmethod
    def _bound_listener(method):
        def listener(event: Event):
            return method(event.model, event)
        listener.__qualname__ = method.__qualname__
        return listener


class ActiveRecord(metaclass=ActiveRecordMeta):
    """
    A table row as an object: declared Field properties, relation accessors
    marked with @relation, and lifecycle events around every write.

        class Order(ActiveRecord):
            __table__ = "order"
            id = IntegerField(primary_key=True)
            customer_id = IntegerField()

            @relation
            def customer(self):
                return self.has_one(Customer, {"id": "customer_id"})
    """
    __table__: Optional[str] = None
    __primary_key__: Union[str, list[str], None] = None
    __unique_keys__: Optional[list[str]] = None
    __optimistic_lock__: Optional[str] = None
    __handlers__: tuple = ()
    __property_handlers__: dict = {}
    __abstract__: bool = True

    def __init__(self, db: Database = None, **values: Any):
        self._db = db
        self._attributes: dict[str, Any] = {name: field.default_value() for name, field in self.__fields__.items()}
        self._old_values: Optional[dict[str, Any]] = None
        self._related: dict[str, Any] = {}
        self._relations_dependencies: dict[str, dict[str, str]] = {}

        for name, value in values.items():
            self.set_attribute(name, value)

    def __repr__(self):
        pk = {name: self._attributes.get(name) for name in self.__fields__ if self.__fields__[name].primary_key}
        return f"<{self.__class__.__name__} {pk or self._attributes}>"

    @property
    def db(self) -> Database:
        if self._db is None:
            raise ConfigurationError(f"{self.__class__.__name__} has no database connection.")
        return self._db

    # ---------------------------------------------------------------------------
    # Class-level configuration
    # ---------------------------------------------------------------------------

    @classmethod
    def table_name(cls) -> str:
        return cls.__table__ or to_snake_case(split_camel_case(cls.__name__))

    @classmethod
    def primary_key_columns(cls, db: Database = None) -> list[str]:
        if cls.__primary_key__:
            return [cls.__primary_key__] if isinstance(cls.__primary_key__, str) else list(cls.__primary_key__)
        declared = [name for name, field in cls.__fields__.items() if field.primary_key]
        if declared:
            return declared
        if db is None:
            raise ConfigurationError(f"{cls.__name__} declares no primary key.")
        return db.primary_key_columns(cls.table_name())

    def primary_key(self) -> list[str]:
        return self.primary_key_columns(self._db)

    def optimistic_lock_property_name(self) -> Optional[str]:
        return self.__optimistic_lock__

    @classmethod
    def on(cls, event_type: Type[Event], listener: Callable[[Event], Any]):
        """Register a listener for this class; it receives the event."""
        cls.__listeners__.append((event_type, listener))
        EventDispatcherProvider.reset()

    def _dispatch(self, event: Event) -> Event:
        return EventDispatcherProvider.get(type(self)).dispatch(event)

    # ---------------------------------------------------------------------------
    # Querying
    # ---------------------------------------------------------------------------

    @classmethod
    def query(cls, db: Database) -> ActiveQuery:
        if vars(cls).get("__abstract__", False):
            raise ConfigurationError(f"{cls.__name__} is abstract and cannot be queried.")
        model = cls(db=db)
        event = model._dispatch(BeforeCreateQuery(model))
        if event.is_default_prevented():
            return event.get_return_value()

        query = ActiveQuery(cls, db)
        model._dispatch(AfterCreateQuery(model, query))
        return query

    @classmethod
    def _find_condition(cls, db: Database, condition) -> dict:
        if isinstance(condition, dict):
            return condition
        primary_key = cls.primary_key_columns(db)
        values = list(condition) if isinstance(condition, (list, tuple)) else [condition]
        if len(values) != len(primary_key):
            raise InvalidCallError(f"{cls.__name__} primary key has {len(primary_key)} column(s), got {len(values)} value(s).")
        return dict(zip(primary_key, values))

    @classmethod
    def find(cls, db: Database, condition=None) -> ActiveQuery:
        """A query for this model, optionally pre-filtered by primary key or condition."""
        query = cls.query(db)
        if condition is not None:
            query.and_where(cls._find_condition(db, condition))
        return query

    @classmethod
    def find_one(cls: Type[T], db: Database, condition) -> Optional[T]:
        """Find by primary key value(s) or by a {column: value} condition."""
        return cls.find(db, condition).one()

    @classmethod
    def find_all(cls: Type[T], db: Database, condition=None):
        return cls.find(db, condition).all()

    @classmethod
    def create(cls: Type[T], db: Database, **values: Any) -> T:
        """
        Create a new model instance with the given attributes and save it to the database.
        """
        instance = cls(db=db, **values)
        instance.save()
        return instance

    # ---------------------------------------------------------------------------
    # Properties
    # ---------------------------------------------------------------------------

    def has_property(self, name: str) -> bool:
        return name in self.__fields__

    def property_names(self) -> list[str]:
        return list(self.__fields__)

    def get_attribute(self, name: str) -> Any:
        if name not in self.__fields__:
            raise UnknownPropertyError(type(self), name)
        return self._attributes.get(name)

    def set_attribute(self, name: str, value: Any):
        if name not in self.__fields__:
            raise UnknownPropertyError(type(self), name)
        if name in self._relations_dependencies and (value is None or self._attributes.get(name) != value):
            self._reset_dependent_relations(name)
        self._attributes[name] = value
        return self

    def get(self, name: str) -> Result:
        if not self.has_property(name):
            return Err(UnknownPropertyError(type(self), name))
        return Ok(self._attributes.get(name))

    def set(self, name: str, value: Any) -> Result:
        if not self.has_property(name):
            return Err(UnknownPropertyError(type(self), name))
        self.set_attribute(name, value)
        return Ok(value)

    def fill(self, **values: Any) -> Self:
        for name, value in values.items():
            self.set_attribute(name, value)
        return self

    def property_values(self, names: list[str] = None, except_: tuple = ()) -> dict[str, Any]:
        names = self.property_names() if names is None else names
        return {name: self.get_attribute(name) for name in names if name not in except_}

    def property_values_for(self, properties) -> dict[str, Any]:
        """Values for a properties argument: None (dirty values), a name list or a dict."""
        if properties is None:
            return self.new_values()
        if isinstance(properties, dict):
            return dict(properties)
        return {name: self.get_attribute(name) for name in properties}

    def populate_properties(self, values: dict[str, Any]) -> Self:
        """Assign every known property in values; unknown names are skipped."""
        for name, value in values.items():
            if self.has_property(name):
                self.set_attribute(name, value)
        return self

    def old_values(self) -> dict[str, Any]:
        return dict(self._old_values or {})

    def old_value(self, name: str) -> Any:
        return (self._old_values or {}).get(name)

    def assign_old_values(self, values: Optional[dict[str, Any]] = None):
        self._old_values = None if values is None else dict(values)

    def is_new(self) -> bool:
        return self._old_values is None

    def mark_as_new(self):
        self._old_values = None

    def mark_as_existing(self):
        self._old_values = dict(self._attributes)

    def mark_property_changed(self, name: str):
        if self._old_values is not None:
            self._old_values.pop(name, None)

    def new_values(self, names: list[str] = None) -> dict[str, Any]:
        """Values changed since the record was loaded or saved; every value for a new record."""
        current = self.property_values(names)
        if not self._old_values:
            return current
        return {
            name: value for name, value in current.items()
            if name not in self._old_values or self._old_values[name] != value
        }

    def is_changed(self) -> bool:
        return bool(self.new_values())

    def is_property_changed(self, name: str) -> bool:
        if self._old_values is None or name not in self._old_values:
            return True
        return self._old_values[name] != self.get_attribute(name)

    def primary_key_values(self) -> dict[str, Any]:
        return {name: self.get_attribute(name) for name in self.primary_key()}

    def primary_key_old_values(self) -> dict[str, Any]:
        primary_key = self.primary_key()
        if not primary_key:
            raise ConfigurationError(f"{self.__class__.__name__} does not have a primary key.")
        return {name: self.old_value(name) for name in primary_key}

    def primary_key_value(self) -> Any:
        values = self.primary_key_values()
        return next(iter(values.values())) if len(values) == 1 else values

    def is_primary_key(self, keys: list[str]) -> bool:
        primary_key = self.primary_key()
        return len(keys) == len(primary_key) and set(keys) == set(primary_key)

    def equals(self, other: "ActiveRecord") -> bool:
        if self.is_new() or other.is_new():
            return False
        return self.table_name() == other.table_name() and self.primary_key_values() == other.primary_key_values()

    # ---------------------------------------------------------------------------
    # Population
    # ---------------------------------------------------------------------------

    @classmethod
    def typecast_row(cls, row: dict[str, Any]) -> dict[str, Any]:
        fields = cls.__fields__
        return {key: fields[key].cast(value) if key in fields else value for key, value in row.items()}

    def populate_record(self, row: dict[str, Any]) -> Self:
        event = self._dispatch(BeforePopulate(self, row))
        if event.is_default_prevented():
            return self

        fields = self.__fields__
        old_values = dict(self._old_values or {})
        for name, value in row.items():
            if name in fields:
                value = fields[name].cast(value)
                self._attributes[name] = value
                old_values[name] = value
        self._old_values = old_values
        self._related = {}
        self._relations_dependencies = {}

        self._dispatch(AfterPopulate(self, row))
        return self

    def _refresh_from_row(self, row: dict[str, Any]):
        fields = self.__fields__
        for name, value in row.items():
            if name in fields:
                self._attributes[name] = fields[name].cast(value)
        self._old_values = dict(self._attributes)

    def refresh(self) -> bool:
        if self.is_new():
            return False
        record = type(self).query(self.db).find_by_pk(self.primary_key_old_values())
        if record is None:
            return False
        self._attributes = dict(record._attributes)
        self._old_values = record.old_values()
        self._related = {}
        self._relations_dependencies = {}
        return True

    def to_dict(self, relations: bool = True) -> dict[str, Any]:
        data = dict(self._attributes)
        if relations:
            for name, value in self._related.items():
                data[name] = _serialize_related(value)
        return data

    # ---------------------------------------------------------------------------
    # Relations
    # ---------------------------------------------------------------------------

    def has_one(self, model_class: Type["ActiveRecord"], link: dict[str, str] = None) -> ActiveQuery:
        """
        Relation returning at most one record. link maps the related model's
        columns to this model's columns; by default the related table holds
        a <this table>_id column.
        """
        if link is None:
            link = {f"{singularize(self.table_name())}_id": self.primary_key()[0]}
        return self._create_relation_query(model_class, link, False)

    def has_many(self, model_class: Type["ActiveRecord"], link: dict[str, str] = None) -> ActiveQuery:
        if link is None:
            link = {f"{singularize(self.table_name())}_id": self.primary_key()[0]}
        return self._create_relation_query(model_class, link, True)

    def belongs_to(self, model_class: Type["ActiveRecord"], link: dict[str, str] = None) -> ActiveQuery:
        # this table holds the <related table>_id column
        if link is None:
            link = {model_class.primary_key_columns(self._db)[0]: f"{singularize(model_class.table_name())}_id"}
        return self._create_relation_query(model_class, link, False)

    def _create_relation_query(self, model_class, link: dict[str, str], multiple: bool) -> ActiveQuery:
        return model_class.query(self.db).primary_model(self).link(link).multiple(multiple)

    def relation_query(self, name: str) -> ActiveQuery:
        cls = type(self)
        if name not in cls.__relations__:
            raise UnknownRelationError(cls, name)
        query = getattr(cls, name)(self)
        if not isinstance(query, ActiveQuery):
            raise ConfigurationError(
                f"{cls.__name__}.{name}() must return an ActiveQuery, got {type(query).__name__}."
            )
        return query

    def relation(self, name: str) -> Any:
        """Related record(s), loaded on first access and cached."""
        if name in self._related:
            return self._related[name]
        query = self.relation_query(name)
        self._set_relation_dependencies(name, query)
        value = query.related_records()
        self._related[name] = value
        return value

    def is_relation_populated(self, name: str) -> bool:
        return name in self._related

    def populate_relation(self, name: str, records: Any):
        for relation_names in self._relations_dependencies.values():
            relation_names.pop(name, None)
        self._related[name] = records

    def reset_relation(self, name: str):
        self._related.pop(name, None)

    def related_records(self) -> dict[str, Any]:
        return dict(self._related)

    def _set_relation_dependencies(self, name: str, relation: ActiveQuery, via_relation_name: str = None):
        via = relation.get_via()
        if via is None:
            for column in relation.get_link().values():
                dependencies = self._relations_dependencies.setdefault(column, {})
                dependencies[name] = name
                if via_relation_name is not None:
                    dependencies[via_relation_name] = via_relation_name
        elif isinstance(via, tuple):
            self._set_relation_dependencies(name, via[1], via[0])
        else:
            self._set_relation_dependencies(name, via)

    def _reset_dependent_relations(self, column: str):
        for relation_name in self._relations_dependencies.pop(column, {}):
            self._related.pop(relation_name, None)

    # ---------------------------------------------------------------------------
    # Linking
    # ---------------------------------------------------------------------------

    def link(self, name: str, model: "ActiveRecord", extra_columns: dict[str, Any] = None):
        """
        Establish the relation between this record and model by setting the
        foreign key, or by inserting a junction row for via relations.
        """
        relation = self.relation_query(name)
        via = relation.get_via()

        if via is not None:
            if self.is_new() or model.is_new():
                raise InvalidCallError("Unable to link models: the models being linked cannot be newly created.")

            if isinstance(via, tuple):
                via_name, via_relation = via[0], via[1]
                via_class = via_relation.model_class
                self._related.pop(via_name, None)
            else:
                via_relation = via
                via_class = None

            columns = {a: self.get_attribute(b) for a, b in via_relation.get_link().items()}
            for a, b in relation.get_link().items():
                columns[b] = model.get_attribute(a)
            columns.update(extra_columns or {})

            if via_class is not None:
                junction = via_class(db=self.db)
                for column, value in columns.items():
                    junction.set_attribute(column, value)
                junction.insert()
            else:
                self.db.execute(*QueryBuilder(self.db, via_relation.table_name).insert(columns))
        else:
            link = relation.get_link()
            inverted = {parent: child for child, parent in link.items()}
            child_is_keyed = model.is_primary_key(list(link.keys()))
            parent_is_keyed = self.is_primary_key(list(link.values()))

            if child_is_keyed and parent_is_keyed:
                if self.is_new() and model.is_new():
                    raise InvalidCallError("Unable to link models: at most one model can be newly created.")
                if self.is_new():
                    self._bind_models(inverted, self, model)
                else:
                    self._bind_models(link, model, self)
            elif child_is_keyed:
                self._bind_models(inverted, self, model)
            elif parent_is_keyed:
                self._bind_models(link, model, self)
            else:
                raise InvalidCallError(
                    "Unable to link models: the link defining the relation does not involve any primary key."
                )

        if not relation.is_multiple():
            self._related[name] = model
        elif name in self._related:
            index_by = relation.get_index_by()
            if index_by is not None:
                key = index_value(model, index_by)
                if key is not None:
                    self._related[name][key] = model
            else:
                self._related[name].append(model)

    def unlink(self, name: str, model: "ActiveRecord", delete: bool = False):
        """
        Remove the relation between this record and model. The foreign key is
        nulled, or the row (or junction row) deleted when delete is True.
        """
        relation = self.relation_query(name)
        via = relation.get_via()

        if via is not None:
            if isinstance(via, tuple):
                via_name, via_relation = via[0], via[1]
                via_class = via_relation.model_class
                self._related.pop(via_name, None)
            else:
                via_relation = via
                via_class = None

            columns = {a: self.get_attribute(b) for a, b in via_relation.get_link().items()}
            for a, b in relation.get_link().items():
                columns[b] = model.get_attribute(a)
            condition = QueryBuilder(self.db).where(columns).and_where(via_relation.get_on()).condition

            if via_class is not None:
                if delete:
                    via_class.delete_all(self.db, condition)
                else:
                    via_class.update_all(self.db, {column: None for column in columns}, condition)
            else:
                junction = QueryBuilder(self.db, via_relation.table_name).where(condition)
                if delete:
                    self.db.execute(*junction.delete())
                else:
                    self.db.execute(*junction.update({column: None for column in columns}))
        else:
            link = relation.get_link()
            child_is_keyed = model.is_primary_key(list(link.keys()))
            parent_is_keyed = self.is_primary_key(list(link.values()))

            if parent_is_keyed:
                for a in link:
                    value = model.get_attribute(a)
                    if isinstance(value, list):
                        value.remove(self.get_attribute(link[a]))
                        model.set_attribute(a, value)
                    else:
                        model.set_attribute(a, None)
                if delete:
                    model.delete()
                else:
                    model.save()
            elif child_is_keyed:
                for a, b in link.items():
                    value = self.get_attribute(b)
                    if isinstance(value, list):
                        value.remove(model.get_attribute(a))
                        self.set_attribute(b, value)
                    else:
                        self.set_attribute(b, None)
                if delete:
                    self.delete()
                else:
                    self.save()
            else:
                raise InvalidCallError("Unable to unlink models: the link does not involve any primary key.")

        if not relation.is_multiple():
            self._related.pop(name, None)
        elif name in self._related:
            related = self._related[name]
            if isinstance(related, dict):
                for key in [key for key, item in related.items() if model.equals(item)]:
                    del related[key]
            else:
                self._related[name] = [item for item in related if not model.equals(item)]

    def unlink_all(self, name: str, delete: bool = False):
        """
        Remove the relation between this record and all related records with
        one statement per table; no per-record events fire.
        """
        relation = self.relation_query(name)
        via = relation.get_via()

        if via is not None:
            if isinstance(via, tuple):
                via_name, via_relation = via[0], via[1]
                via_class = via_relation.model_class
                self._related.pop(via_name, None)
            else:
                via_relation = via
                via_class = None

            nulls = {a: None for a in via_relation.get_link()}
            condition = QueryBuilder(self.db).where(
                {a: self.get_attribute(b) for a, b in via_relation.get_link().items()}
            ).and_where(via_relation.condition).and_where(via_relation.get_on()).condition

            if via_class is not None:
                if delete:
                    via_class.delete_all(self.db, condition)
                else:
                    via_class.update_all(self.db, nulls, condition)
            else:
                junction = QueryBuilder(self.db, via_relation.table_name).where(condition)
                if delete:
                    self.db.execute(*junction.delete())
                else:
                    self.db.execute(*junction.update(nulls))
        else:
            related_class = relation.model_class
            link = relation.get_link()
            related_primary_key = related_class.primary_key_columns(self.db)
            if not delete and any(a in related_primary_key for a in link):
                raise InvalidCallError("Unable to unlink models: nulling the link would clear a primary key.")

            condition = QueryBuilder(self.db).where(
                {a: self.get_attribute(b) for a, b in link.items()}
            ).and_where(relation.condition).and_where(relation.get_on()).condition

            if delete:
                related_class.delete_all(self.db, condition)
            else:
                related_class.update_all(self.db, {a: None for a in link}, condition)

        self._related.pop(name, None)

    def _bind_models(self, link: dict[str, str], foreign_model: "ActiveRecord", primary_model: "ActiveRecord"):
        for foreign_key, primary_key in link.items():
            value = primary_model.get_attribute(primary_key)
            if value is None:
                raise InvalidCallError(
                    f"Unable to link models: the primary key of {primary_model.__class__.__name__} is None."
                )
            current = foreign_model.get_attribute(foreign_key)
            if isinstance(current, list):
                foreign_model.set_attribute(foreign_key, current + [value])
            else:
                foreign_model.set_attribute(foreign_key, value)
        foreign_model.save()

    # ---------------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------------

    @classmethod
    def _dump_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        fields = cls.__fields__
        return {
            name: value if isinstance(value, Raw) or name not in fields else fields[name].dump(value)
            for name, value in values.items()
        }

    def _assign_properties(self, properties) -> Optional[list[str]]:
        if isinstance(properties, dict):
            for name, value in properties.items():
                self.set_attribute(name, value)
            return list(properties)
        return None if properties is None else list(properties)

    def save(self, properties=None) -> bool:
        """
        Insert a new record or update the changed properties of an existing one.
        Returns False without touching the database when nothing changed.
        """
        names = self._assign_properties(properties)
        if not self.is_new() and not self.new_values(names):
            return False

        event = self._dispatch(BeforeSave(self, names))
        if event.is_default_prevented():
            result = event.get_return_value()
            return False if result is None else result

        if self.is_new():
            result = self.insert(event.properties)
        else:
            result = bool(self.update(event.properties))

        self._dispatch(AfterSave(self, result))
        return result

    def insert(self, properties=None) -> bool:
        names = self._assign_properties(properties)

        with self.db.transaction():
            event = self._dispatch(BeforeInsert(self, names))
            if event.is_default_prevented():
                result = event.get_return_value()
                return False if result is None else result

            result = self._insert_internal(event.properties)
            self._dispatch(AfterInsert(self, result))
        return result

    def _insert_internal(self, names: list[str] = None) -> bool:
        values = self.property_values(names)
        # None means "let the database decide" for a new row
        write = {name: value for name, value in values.items() if value is not None}

        rows = self.db.execute(*QueryBuilder(self.db, self.table_name()).insert(self._dump_values(write)))

        primary_key = self.primary_key()
        if len(primary_key) == 1 and self._attributes.get(primary_key[0]) is None and rows.lastrowid is not None:
            name = primary_key[0]
            field = self.__fields__.get(name)
            value = field.cast(rows.lastrowid) if field is not None else rows.lastrowid
            self._attributes[name] = value
            values[name] = value

        self._old_values = {**(self._old_values or {}), **values}
        return True

    def update(self, properties=None) -> Union[int, bool]:
        """
        Write the changed properties. Returns the affected row count, or False
        when nothing changed (no events, no statement).
        """
        if self.is_new():
            raise InvalidCallError("The record is new and cannot be updated.")

        names = self._assign_properties(properties)
        if not self.new_values(names):
            return False

        with self.db.transaction():
            event = self._dispatch(BeforeUpdate(self, names))
            if event.is_default_prevented():
                result = event.get_return_value()
                return 0 if result is None else result

            result = self._update_internal(event.properties)
            self._dispatch(AfterUpdate(self, result))
        return result

    def _update_internal(self, names: list[str] = None) -> int:
        values = self.new_values(names)
        if not values:
            return 0

        condition = self.primary_key_old_values()
        lock = self.optimistic_lock_property_name()
        if lock is None:
            rows = self.update_all(self.db, values, condition)
        else:
            lock_value = self.get_attribute(lock)
            condition[lock] = lock_value
            values[lock] = (lock_value or 0) + 1
            rows = self.update_all(self.db, values, condition)
            if rows == 0:
                raise StaleDataError("The object being updated is outdated.")
            self._attributes[lock] = values[lock]

        self._old_values = {**(self._old_values or {}), **values}
        return rows

    def update_counters(self, counters: dict[str, int]) -> bool:
        if self.is_new():
            raise InvalidCallError("Updating counters is not possible for new records.")

        if self.update_all_counters(self.db, counters, self.primary_key_old_values()) == 0:
            return False

        for name, increment in counters.items():
            value = (self.get_attribute(name) or 0) + increment
            self._attributes[name] = value
            self._old_values[name] = value
        return True

    def upsert(self, insert_properties=None, update_properties=True) -> bool:
        """
        Insert the record or, when a row with the same unique key exists,
        update it. update_properties is True (every inserted non-key column),
        False (leave the row alone), a name list or a {column: value} dict.
        """
        with self.db.transaction():
            event = self._dispatch(BeforeUpsert(self, insert_properties, update_properties))
            if event.is_default_prevented():
                result = event.get_return_value()
                return False if result is None else result

            result = self._upsert_internal(event.insert_properties, event.update_properties)
            self._dispatch(AfterUpsert(self, result))
        return result

    def _upsert_internal(self, insert_properties=None, update_properties=True) -> bool:
        if isinstance(insert_properties, dict):
            for name, value in insert_properties.items():
                if self.has_property(name):
                    self.set_attribute(name, value)
            insert_values = dict(insert_properties)
        elif insert_properties is None:
            insert_values = self.property_values()
        else:
            insert_values = {name: self.get_attribute(name) for name in insert_properties}

        insert_values = {name: value for name, value in insert_values.items() if value is not None}

        if update_properties is True or update_properties is False:
            update_values = update_properties
        elif isinstance(update_properties, dict):
            update_values = dict(update_properties)
        else:
            update_values = {name: self.get_attribute(name) for name in update_properties}

        unique_by = list(self.__unique_keys__ or self.primary_key())
        returning = self.db.driver_name() in ("sqlite", "pgsql")

        rows = self.db.execute(*QueryBuilder(self.db, self.table_name()).upsert(
            self._dump_values(insert_values),
            update_values if isinstance(update_values, bool) else self._dump_values(update_values),
            unique_by,
            returning,
        ))

        if not rows and returning and all(name in insert_values for name in unique_by):
            # a conflict that changed nothing returns no rows; read back the existing one
            lookup = self._dump_values({name: insert_values[name] for name in unique_by})
            rows = self.db.execute(*QueryBuilder(self.db, self.table_name()).where(lookup).limit(1).get())

        if rows:
            self._refresh_from_row(rows[0])
        else:
            primary_key = self.primary_key()
            if not returning and len(primary_key) == 1 and self._attributes.get(primary_key[0]) is None \
                    and rows.lastrowid:
                field = self.__fields__.get(primary_key[0])
                self._attributes[primary_key[0]] = field.cast(rows.lastrowid) if field is not None else rows.lastrowid
            self._old_values = {**(self._old_values or {}), **self.property_values(list(insert_values))}
        return True

    def delete(self) -> int:
        with self.db.transaction():
            event = self._dispatch(BeforeDelete(self))
            if event.is_default_prevented():
                result = event.get_return_value()
                return 0 if result is None else result

            result = self._delete_internal()
            self._dispatch(AfterDelete(self, result))
        return result

    def _delete_internal(self) -> int:
        if self.is_new():
            raise InvalidCallError("The record is new and cannot be deleted.")

        condition = self.primary_key_old_values()
        lock = self.optimistic_lock_property_name()
        if lock is not None:
            condition[lock] = self.get_attribute(lock)

        result = self.delete_all(self.db, condition)
        if lock is not None and result == 0:
            raise StaleDataError("The object being deleted is outdated.")

        self._old_values = None
        return result

    # ---------------------------------------------------------------------------
    # Bulk statements
    # ---------------------------------------------------------------------------

    @classmethod
    def update_all(cls, db: Database, values: dict[str, Any], condition=None) -> int:
        """UPDATE every row matching condition. No events fire."""
        builder = QueryBuilder(db, cls.table_name())
        if condition is not None:
            builder.where(condition)
        return db.execute(*builder.update(cls._dump_values(values))).rowcount

    @classmethod
    def update_all_counters(cls, db: Database, counters: dict[str, int], condition=None) -> int:
        builder = QueryBuilder(db, cls.table_name())
        values = {
            name: Raw(f"{db.quote_identifier(name)} + {db.placeholder}", [increment])
            for name, increment in counters.items()
        }
        if condition is not None:
            builder.where(condition)
        return db.execute(*builder.update(values)).rowcount

    @classmethod
    def delete_all(cls, db: Database, condition=None) -> int:
        builder = QueryBuilder(db, cls.table_name())
        if condition is not None:
            builder.where(condition)
        return db.execute(*builder.delete()).rowcount


def _serialize_related(value):
    if isinstance(value, ActiveRecord):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _serialize_related(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_serialize_related(item) for item in value]
    return value
