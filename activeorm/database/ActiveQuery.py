import re
from typing import Any, Callable, Optional, Self, Union

from activeorm.database.Exceptions import EmptyQueryShortCircuit, NoResultsFound
from activeorm.database.JoinsWithBuilder import JoinWith, JoinsWithBuilder
from activeorm.database.QueryBuilder import Condition, QueryBuilder, Raw
from activeorm.database.RelationPopulator import (
    RelationPopulator,
    filter_by_models,
    find_junction_rows,
    index_models,
)
from activeorm.database.active_record.utils.ModelCollection import ModelCollection

ALIASED_RELATION = re.compile(r"^(.*?)(?:\s+AS\s+|\s+)(\w+)$", re.IGNORECASE)


class PaginationResult:
    def __init__(self, items, total, per_page, current_page):
        self.items = items
        self.total = total
        self.per_page = per_page
        self.current_page = current_page
        self.last_page = max((total + per_page - 1) // per_page, 1)

    @property
    def has_next(self): return self.current_page < self.last_page

    @property
    def has_prev(self): return self.current_page > 1

    def to_dict(self):
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "has_next": self.has_next,
            "has_prev": self.has_prev
        }


class ActiveQuery(QueryBuilder):
    """
    Query against one model's table that materializes models (or typed dicts
    in array mode), eager-loads relations and doubles as a relation
    descriptor when created by has_one()/has_many().
    """

    def __init__(self, model_class, db):
        super().__init__(db, model_class.table_name())
        self.model_class = model_class

        self.with_relations: dict[Union[int, str], Any] = {}
        self.join_with_specs: list[JoinWith] = []
        self._as_array: Optional[bool] = None
        self._index_by: Union[str, Callable, None] = None
        self._emulate_execution = False

        # relation descriptor
        self._primary_model = None
        self._link: dict[str, str] = {}
        self._multiple = False
        self._via = None
        self._inverse_of: Optional[str] = None
        self._on: Optional[Condition] = None

    def _copy_state(self):
        super()._copy_state()
        self.with_relations = dict(self.with_relations)
        self.join_with_specs = self.join_with_specs[:]
        self._link = dict(self._link)
        if isinstance(self._via, tuple):
            self._via = (self._via[0], self._via[1].clone(), self._via[2])
        elif self._via is not None:
            self._via = self._via.clone()

    def __repr__(self):
        return f"<ActiveQuery {self.model_class.__name__} {self.to_raw_sql()!r}>"

    # ----------------------------------------------------------------------
    # Configuration
    # ----------------------------------------------------------------------

    def with_(self, *relations) -> Self:
        """
        Eager-load relations. Strings ("orders", "orders.items") are appended,
        {name: callback} entries replace an earlier entry with the same name.
        Integer keys in a dict are positional and are appended as well.
        """
        if len(relations) == 1 and isinstance(relations[0], (list, tuple)):
            relations = relations[0]

        for relation in relations:
            if isinstance(relation, dict):
                for name, callback in relation.items():
                    if isinstance(name, int):
                        self._append_relation(callback)
                    else:
                        self.with_relations[name] = callback
            else:
                self._append_relation(relation)
        return self

    def _append_relation(self, relation):
        position = sum(1 for key in self.with_relations if isinstance(key, int))
        self.with_relations[position] = relation

    def join_with(self, relations, eager_loading: Union[bool, list] = True,
                  join_type: Union[str, dict] = "LEFT JOIN") -> Self:
        if isinstance(relations, (str, dict)):
            relations = [relations]

        normalized: dict[Union[int, str], Any] = {}
        for entry in relations:
            items = entry.items() if isinstance(entry, dict) else [(entry, None)]
            for name, callback in items:
                matches = ALIASED_RELATION.match(name)
                if matches:
                    name, alias = matches.group(1), matches.group(2)
                    callback = self._aliased_callback(alias, callback)

                if callback is None:
                    position = sum(1 for key in normalized if isinstance(key, int))
                    normalized[position] = name
                else:
                    normalized[name] = callback

        self.join_with_specs.append(JoinWith(normalized, eager_loading, join_type))
        return self

    @staticmethod
    def _aliased_callback(alias: str, callback: Optional[Callable]) -> Callable:
        def apply(query: "ActiveQuery"):
            query.alias(alias)
            if callback is not None:
                callback(query)
        return apply

    def inner_join_with(self, relations, eager_loading: Union[bool, list] = True) -> Self:
        return self.join_with(relations, eager_loading, "INNER JOIN")

    def reset_join_with(self) -> Self:
        self.join_with_specs = []
        return self

    def from_(self, table: str, alias: str = None) -> Self:
        matches = re.match(r"^(.*?)\s+(\w+)$", table.strip())
        if matches and alias is None:
            table, alias = matches.group(1), matches.group(2)
        self.table_name = table
        self.table_alias = alias
        return self

    def alias(self, alias: str) -> Self:
        self.table_alias = alias
        return self

    def get_alias(self) -> str:
        return self.table_alias or self.table_name

    def as_array(self, value: Optional[bool] = True) -> Self:
        self._as_array = value
        return self

    def is_as_array(self) -> Optional[bool]:
        return self._as_array

    def index_by(self, column: Union[str, Callable, None]) -> Self:
        self._index_by = column
        return self

    def get_index_by(self):
        return self._index_by

    def emulate_execution(self, value: bool = True) -> Self:
        self._emulate_execution = value
        return self

    def should_emulate_execution(self) -> bool:
        return self._emulate_execution

    # ----------------------------------------------------------------------
    # Relation descriptor
    # ----------------------------------------------------------------------

    def primary_model(self, model) -> Self:
        self._primary_model = model
        return self

    def get_primary_model(self):
        return self._primary_model

    def link(self, link: dict[str, str]) -> Self:
        self._link = dict(link)
        return self

    def get_link(self) -> dict[str, str]:
        return self._link

    def multiple(self, value: bool) -> Self:
        self._multiple = value
        return self

    def is_multiple(self) -> bool:
        return self._multiple

    def via(self, relation_name: str, callback: Callable = None) -> Self:
        """Fetch through another relation of the primary model."""
        relation = self._primary_model.relation_query(relation_name) if self._primary_model is not None else None
        self._via = (relation_name, relation, callback is not None)
        if callback is not None:
            callback(relation)
        return self

    def via_table(self, table: str, link: dict[str, str], callback: Callable = None) -> Self:
        """Fetch through a junction table; link maps junction columns to primary model columns."""
        model_class = type(self._primary_model) if self._primary_model is not None else self.model_class
        relation = ActiveQuery(model_class, self.db).from_(table).link(link).multiple(True).as_array()
        self._via = relation
        if callback is not None:
            callback(relation)
        return self

    def get_via(self):
        return self._via

    def reset_via(self) -> Self:
        self._via = None
        return self

    def inverse_of(self, relation_name: str) -> Self:
        self._inverse_of = relation_name
        return self

    def get_inverse_of(self) -> Optional[str]:
        return self._inverse_of

    def on(self, *condition) -> Self:
        self._on = self._make_condition(*condition)
        return self

    def and_on(self, *condition) -> Self:
        condition = self._make_condition(*condition)
        self._on = condition if self._on is None else self._on.combine("AND", condition)
        return self

    def or_on(self, *condition) -> Self:
        condition = self._make_condition(*condition)
        self._on = condition if self._on is None else self._on.combine("OR", condition)
        return self

    def get_on(self) -> Optional[Condition]:
        return self._on

    # ----------------------------------------------------------------------
    # Preparation
    # ----------------------------------------------------------------------

    def prepare(self) -> "ActiveQuery":
        """
        Return the executable form of this query: relation joins expanded,
        lazy relation filters applied. This query is left untouched.
        """
        query = self.clone()

        if query.join_with_specs:
            JoinsWithBuilder(query).build()
            query.join_with_specs = []

        if not query.columns and query.joins:
            query.columns = [f"{query.get_alias()}.*"]

        if query._primary_model is not None:
            query._filter_by_primary_model()

        if query._on is not None:
            query._add_condition("AND", query._on)

        return query

    def _filter_by_primary_model(self):
        primary_model = self._primary_model

        if isinstance(self._via, ActiveQuery):
            via_models = find_junction_rows(self._via, [primary_model])
            filter_by_models(self, via_models)
        elif self._via is not None:
            via_name, via_query, via_callback_used = self._via
            if via_query.is_multiple():
                if via_callback_used:
                    via_models = list(via_query.all())
                elif primary_model.is_relation_populated(via_name):
                    via_models = primary_model.relation(via_name)
                else:
                    via_models = via_query.all()
                    primary_model.populate_relation(via_name, via_models)
                via_models = list(via_models.values() if isinstance(via_models, dict) else via_models)
            else:
                if via_callback_used:
                    model = via_query.one()
                elif primary_model.is_relation_populated(via_name):
                    model = primary_model.relation(via_name)
                else:
                    model = via_query.one()
                    primary_model.populate_relation(via_name, model)
                via_models = [] if model is None else [model]
            filter_by_models(self, via_models)
        else:
            filter_by_models(self, [primary_model])

    # ----------------------------------------------------------------------
    # Execution
    # ----------------------------------------------------------------------

    def _fetch_rows(self):
        if self._emulate_execution:
            raise EmptyQueryShortCircuit()
        return self.db.execute(*self.get())

    def all(self) -> Union[ModelCollection, dict]:
        query = self.prepare()
        try:
            rows = query._fetch_rows()
        except EmptyQueryShortCircuit:
            return {} if query._index_by is not None else ModelCollection()
        return query.populate(rows)

    def one(self):
        query = self.prepare()
        if query.limit_count is None:
            query.limit(1)
        try:
            rows = query._fetch_rows()
        except EmptyQueryShortCircuit:
            return None
        if not rows:
            return None
        models = query.populate(rows[:1])
        return next(iter(models.values())) if isinstance(models, dict) else models[0]

    def one_or_fail(self):
        model = self.one()
        if model is None:
            raise NoResultsFound(f"No {self.model_class.__name__} matches the query.")
        return model

    def related_records(self):
        return self.all() if self._multiple else self.one()

    def count(self, column: str = "*") -> int:
        """Row count of the composed query; limit, offset and ordering are ignored."""
        query = self.prepare()
        if query._emulate_execution:
            return 0
        rows = self.db.execute(*query.as_count(column).get())
        return int(next(iter(rows[0].values()))) if rows else 0

    def exists(self) -> bool:
        query = self.prepare()
        if query._emulate_execution:
            return False
        query.columns = [Raw("1")]
        query.remove_ordering().limit(1)
        return bool(self.db.execute(*query.get()))

    def scalar(self):
        query = self.prepare()
        try:
            rows = query.limit(1)._fetch_rows()
        except EmptyQueryShortCircuit:
            return None
        return next(iter(rows[0].values())) if rows else None

    def column(self) -> list:
        query = self.prepare()
        try:
            rows = query._fetch_rows()
        except EmptyQueryShortCircuit:
            return []
        return [next(iter(row.values())) for row in rows]

    def find_by_pk(self, value):
        primary_key = self.model_class.primary_key_columns(self.db)
        if isinstance(value, dict):
            values = [value.get(column) for column in primary_key]
        elif isinstance(value, (list, tuple)):
            values = list(value)
        else:
            values = [value]

        alias = self.get_alias()
        prefix = f"{alias}." if self.joins or self.join_with_specs else ""
        condition = {f"{prefix}{column}": val for column, val in zip(primary_key, values)}
        return self.clone().and_where(condition).one()

    def paginate(self, page: int = 1, per_page: int = 10) -> PaginationResult:
        """
        Paginate results with database-level pagination.
        """
        total = self.count()
        query = self.clone().for_page(page, per_page)
        if total == 0:
            query.emulate_execution()

        return PaginationResult(
            items=query.all(),
            total=total,
            per_page=per_page,
            current_page=page
        )

    # ----------------------------------------------------------------------
    # Row mapping
    # ----------------------------------------------------------------------

    def populate(self, rows: list[dict]) -> Union[ModelCollection, dict]:
        if not rows:
            return {} if self._index_by is not None else ModelCollection()

        if self.joins and self._index_by is None:
            rows = self._remove_duplicated_rows(rows)

        models = self._create_models(rows)

        if self.with_relations:
            self.find_with(self.with_relations, models)

        self._add_inverse_relations(models)

        if self._index_by is not None:
            return index_models(models, self._index_by)
        return ModelCollection(models)

    def _remove_duplicated_rows(self, rows: list[dict]) -> list[dict]:
        primary_key = self.model_class.primary_key_columns(self.db)
        if not all(column in rows[0] for column in primary_key):
            return list(rows)

        unique = {}
        for row in rows:
            unique[tuple(row[column] for column in primary_key)] = row
        return list(unique.values())

    def _create_models(self, rows: list[dict]) -> list:
        if self._as_array:
            return [self.model_class.typecast_row(row) for row in rows]
        return [self.model_class(db=self.db).populate_record(row) for row in rows]

    def find_with(self, with_relations: dict, models: list):
        """Eager-load with_relations into models (records or dicts) in place."""
        first = models[0]
        primary_model = first if not isinstance(first, dict) else self.model_class(db=self.db)

        for name, relation in self._normalize_relations(primary_model, with_relations).items():
            if relation.is_as_array() is None:
                # inherit array mode from the primary query
                relation.as_array(self._as_array)
            RelationPopulator(relation, name, models).run()

    @staticmethod
    def _normalize_relations(model, with_relations: dict) -> dict[str, "ActiveQuery"]:
        relations: dict[str, ActiveQuery] = {}

        for key, value in with_relations.items():
            name, callback = (value, None) if isinstance(key, int) else (key, value)
            name, _, child_name = name.partition(".")

            if name not in relations:
                relation = model.relation_query(name)
                relation.primary_model(None)
                relations[name] = relation
            else:
                relation = relations[name]

            if child_name:
                relation.with_({child_name: callback})
            elif callback is not None:
                callback(relation)

        return relations

    def _add_inverse_relations(self, models: list):
        if self._inverse_of is None or self._primary_model is None or not models:
            return

        first = models[0]
        if isinstance(first, dict):
            inverse = self.model_class(db=self.db).relation_query(self._inverse_of)
            value = [self._primary_model] if inverse.is_multiple() else self._primary_model
            for model in models:
                model[self._inverse_of] = value
        else:
            inverse = first.relation_query(self._inverse_of)
            value = [self._primary_model] if inverse.is_multiple() else self._primary_model
            for model in models:
                model.populate_relation(self._inverse_of, value)
