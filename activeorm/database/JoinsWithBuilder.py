import logging
from typing import Any, Union

from activeorm.database.Exceptions import ConfigurationError
from activeorm.database.QueryBuilder import Condition

logger = logging.getLogger("orm.relations")


class JoinWith:
    """One join_with() call: the relations it names and how to join/eager-load them."""

    def __init__(self, relations: dict, eager_loading: Union[bool, list] = True,
                 join_type: Union[str, dict] = "LEFT JOIN"):
        self.relations = relations
        self.eager_loading = eager_loading
        self.join_type = join_type

    def get_with(self) -> dict:
        if self.eager_loading is True:
            return dict(self.relations)
        if isinstance(self.eager_loading, (list, tuple)):
            return {
                key: value for key, value in self.relations.items()
                if (value if isinstance(key, int) else key) in self.eager_loading
            }
        return {}

    def get_join_type(self, name: str) -> str:
        if isinstance(self.join_type, str):
            return self.join_type
        return self.join_type.get(name, "INNER JOIN")


class JoinsWithBuilder:
    """
    Turns the join_with() specs of an ActiveQuery into plain joins on that
    query. Relation conditions, ordering and nested joins of each joined
    relation are folded into the main query; explicit joins stay last.
    """

    def __init__(self, query):
        self.query = query

    # ----------------------------------------------------------------------
    # Build
    # ----------------------------------------------------------------------

    def build(self):
        query = self.query
        explicit_joins = query.joins
        query.joins = []

        for join_with in query.join_with_specs:
            self._join_with_relations(query, join_with)
            query.with_(join_with.get_with())

        query.joins = self._unique_joins(query.joins) + explicit_joins
        return query

    @staticmethod
    def _unique_joins(joins: list) -> list:
        by_table: dict[tuple, Any] = {}
        for join in dict.fromkeys(joins):
            by_table.setdefault((join.table, join.alias), join)
        return list(by_table.values())

    def _join_with_relations(self, query, join_with: JoinWith):
        relations: dict = {}

        for key, value in join_with.relations.items():
            name, callback = (value, None) if isinstance(key, int) else (key, value)
            primary_model = query.model_class(db=query.db)
            parent = query
            prefix = ""

            while "." in name:
                child_name, _, name = name.partition(".")
                full_name = prefix + child_name
                if full_name not in relations:
                    relation = primary_model.relation_query(child_name)
                    relations[full_name] = relation
                    self._join_with_relation(parent, relation, join_with.get_join_type(full_name))
                else:
                    relation = relations[full_name]
                primary_model = relation.model_class(db=query.db)
                parent = relation
                prefix = full_name + "."

            full_name = prefix + name
            if full_name not in relations:
                relation = primary_model.relation_query(name)
                relations[full_name] = relation
                if callback is not None:
                    callback(relation)
                if relation.join_with_specs:
                    JoinsWithBuilder(relation).build()
                self._join_with_relation(parent, relation, join_with.get_join_type(full_name))

    def _join_with_relation(self, parent, child, join_type: str):
        query = self.query

        if child.group_by_columns or child.having_condition is not None:
            raise ConfigurationError(
                f"Joining with a relation that has GROUP BY or HAVING is not supported "
                f"({parent.model_class.__name__} -> {child.model_class.__name__})."
            )

        via = child.get_via()
        child.reset_via()
        if via is not None:
            if isinstance(via, tuple):
                via = via[1]
            self._join_with_relation(parent, via, join_type)
            self._join_with_relation(via, child, join_type)
            return

        parent_alias = parent.get_alias()
        child_alias = child.get_alias()
        logger.debug("join %s %s AS %s", join_type, child.table_name, child_alias)

        on = Condition(" AND ".join(
            f"{query._quote_column(f'{parent_alias}.{parent_column}')} = "
            f"{query._quote_column(f'{child_alias}.{child_column}')}"
            for child_column, parent_column in child.get_link().items()
        )) if child.get_link() else None

        if child.get_on() is not None:
            on = child.get_on() if on is None else on.combine("AND", child.get_on())

        query.join(child.table_name, on, join_type, None if child_alias == child.table_name else child_alias)

        query._add_condition("AND", child.condition)
        query.add_order_by(child.order_by_clauses)
        query.joins.extend(child.joins)
