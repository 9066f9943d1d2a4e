import copy
from typing import Any, Iterable, List, NamedTuple, Optional, Tuple, Union

OPERATORS = {"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE", "IN", "NOT IN", "IS", "IS NOT"}


class Raw:
    def __init__(self, expression: str, params: Iterable[Any] = None):
        self.expression = expression
        self.params = list(params or [])

    def __str__(self):
        return self.expression

    def __eq__(self, other):
        return isinstance(other, Raw) and other.expression == self.expression and other.params == self.params

    def __hash__(self):
        return hash(self.expression)


class Condition:
    """
    A compiled WHERE/ON/HAVING fragment and its bound parameters.
    Immutable: combining two conditions builds a new one.
    """
    __slots__ = ("sql", "params")

    def __init__(self, sql: str, params: Iterable[Any] = ()):
        self.sql = sql
        self.params = list(params)

    def combine(self, operator: str, other: "Condition") -> "Condition":
        return Condition(f"({self.sql}) {operator} ({other.sql})", self.params + other.params)

    def __eq__(self, other):
        return isinstance(other, Condition) and other.sql == self.sql and other.params == self.params

    def __hash__(self):
        return hash(self.sql)

    def __repr__(self):
        return f"Condition({self.sql!r}, {self.params!r})"


class JoinClause(NamedTuple):
    join_type: str
    table: str
    alias: Optional[str]
    on: Optional[Condition]


class QueryBuilder:
    """
    Builds SELECT / INSERT / UPDATE / DELETE / upsert statements as (sql, params)
    pairs for the injected Database. Placeholders and identifier quoting come
    from the database so the same builder works across drivers.
    """

    def __init__(self, db, table: str = None, alias: str = None):
        self.db = db
        self.table_name: Optional[str] = table
        self.table_alias: Optional[str] = alias

        self.columns: List[Union[str, Raw]] = []
        self.distinct_flag = False
        self.condition: Optional[Condition] = None
        self.joins: List[JoinClause] = []
        self.order_by_clauses: List[Tuple[Union[str, Raw], str]] = []
        self.group_by_columns: List[Union[str, Raw]] = []
        self.having_condition: Optional[Condition] = None
        self.limit_count: Optional[int] = None
        self.offset_count: Optional[int] = None

    # ----------------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------------

    @property
    def placeholder(self) -> str:
        return self.db.placeholder

    @property
    def driver(self) -> str:
        return self.db.driver_name()

    def _quote_column(self, col: Union[str, Raw]) -> str:
        if isinstance(col, Raw):
            return col.expression
        if any(ch in col for ch in "() ") or col.startswith(("'", '"', "`", "[")):
            return col
        return self.db.quote_identifier(col)

    def _quote_table(self, table: str) -> str:
        return self.db.quote_identifier(table)

    def clone(self) -> "QueryBuilder":
        """
        Copy the builder so that mutating the copy never touches this one.
        Conditions are immutable, so only the containers need copying.
        """
        cloned = copy.copy(self)
        cloned._copy_state()
        return cloned

    def _copy_state(self):
        self.columns = self.columns[:]
        self.joins = self.joins[:]
        self.order_by_clauses = self.order_by_clauses[:]
        self.group_by_columns = self.group_by_columns[:]

    def table(self, table_name: str, alias: str = None):
        self.table_name = table_name
        if alias:
            self.table_alias = alias
        return self

    # ----------------------------------------------------------------------
    # Select list
    # ----------------------------------------------------------------------

    def select(self, *columns):
        self.columns = []
        return self.add_select(*columns)

    def add_select(self, *columns):
        if columns and isinstance(columns[0], list):
            columns = columns[0]

        for col in columns:
            if isinstance(col, tuple):
                expression = col[0].expression if isinstance(col[0], Raw) else self._quote_column(col[0])
                self.columns.append(Raw(f"{expression} AS {self._quote_column(col[1])}"))
            else:
                self.columns.append(col)
        return self

    def select_raw(self, raw_sql: str):
        self.columns.append(Raw(raw_sql))
        return self

    def distinct(self, value: bool = True):
        self.distinct_flag = value
        return self

    # ----------------------------------------------------------------------
    # Conditions
    # ----------------------------------------------------------------------

    def _make_condition(self, *args) -> Optional[Condition]:
        """
        Accepted forms:
            (Condition)                   already compiled
            (Raw) / (str)                 literal SQL fragment
            ({column: value, ...})        equality, None -> IS NULL, list -> IN
            (callable)                    nested group built on a fresh builder
            (column, value)               equality
            (column, operator, value)
        """
        if len(args) == 1:
            condition = args[0]
            if condition is None or isinstance(condition, Condition):
                return condition
            if isinstance(condition, Raw):
                return Condition(condition.expression, condition.params)
            if isinstance(condition, str):
                return Condition(condition)
            if isinstance(condition, dict):
                return self._hash_condition(condition)
            if callable(condition):
                nested = QueryBuilder(self.db)
                condition(nested)
                return nested.condition
            raise TypeError(f"Unsupported condition: {condition!r}")

        if len(args) == 2:
            column, value = args
            return self._compare(column, "IS" if value is None else "=", value)

        if len(args) == 3:
            column, operator, value = args
            return self._compare(column, operator, value)

        raise TypeError(f"Expected 1 to 3 condition arguments, got {len(args)}")

    def _hash_condition(self, mapping: dict) -> Optional[Condition]:
        parts = [self._compare(column, "=", value) for column, value in mapping.items()]
        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]
        return Condition(" AND ".join(part.sql for part in parts), [p for part in parts for p in part.params])

    def _compare(self, column, operator: str, value) -> Condition:
        operator = operator.upper()
        if operator not in OPERATORS:
            raise ValueError(f"Unsupported operator: {operator}")

        if operator in ("IN", "NOT IN"):
            return self._in_condition(column, value, operator)
        if isinstance(value, (list, tuple, set)) and operator in ("=", "!=", "<>"):
            return self._in_condition(column, value, "IN" if operator == "=" else "NOT IN")

        quoted = self._quote_column(column)
        if value is None:
            if operator in ("=", "IS"):
                return Condition(f"{quoted} IS NULL")
            if operator in ("!=", "<>", "IS NOT"):
                return Condition(f"{quoted} IS NOT NULL")
        if isinstance(value, QueryBuilder):
            sub_sql, sub_params = value.get()
            return Condition(f"{quoted} {operator} ({sub_sql})", sub_params)
        if isinstance(value, Raw):
            return Condition(f"{quoted} {operator} {value.expression}", value.params)
        return Condition(f"{quoted} {operator} {self.placeholder}", [value])

    def _in_condition(self, column, values, operator: str = "IN") -> Condition:
        if isinstance(values, QueryBuilder):
            sub_sql, sub_params = values.get()
            if isinstance(column, (list, tuple)):
                quoted = ", ".join(self._quote_column(c) for c in column)
                return Condition(f"({quoted}) {operator} ({sub_sql})", sub_params)
            return Condition(f"{self._quote_column(column)} {operator} ({sub_sql})", sub_params)

        values = list(values)
        if isinstance(column, (list, tuple)):
            return self._composite_in_condition(list(column), values, operator)

        if not values:
            return Condition("1 = 0" if operator == "IN" else "1 = 1")

        quoted = self._quote_column(column)
        present = [v for v in values if v is not None]
        has_null = len(present) != len(values)
        marks = ", ".join([self.placeholder] * len(present))

        if operator == "IN":
            parts = [f"{quoted} IN ({marks})"] if present else []
            if has_null:
                parts.append(f"{quoted} IS NULL")
            sql = parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")"
        else:
            parts = [f"{quoted} NOT IN ({marks})"] if present else []
            if has_null:
                parts.append(f"{quoted} IS NOT NULL")
            sql = " AND ".join(parts)
        return Condition(sql, present)

    def _composite_in_condition(self, columns: list, rows: list, operator: str) -> Condition:
        if not rows:
            return Condition("1 = 0" if operator == "IN" else "1 = 1")

        groups, params = [], []
        for row in rows:
            values = [row.get(c) for c in columns] if isinstance(row, dict) else list(row)
            parts = []
            for column, value in zip(columns, values):
                quoted = self._quote_column(column)
                if value is None:
                    parts.append(f"{quoted} IS NULL")
                else:
                    parts.append(f"{quoted} = {self.placeholder}")
                    params.append(value)
            groups.append("(" + " AND ".join(parts) + ")")

        sql = " OR ".join(groups)
        if operator == "NOT IN":
            return Condition(f"NOT ({sql})", params)
        return Condition(sql if len(groups) == 1 else f"({sql})", params)

    def _add_condition(self, operator: str, condition: Optional[Condition]):
        if condition is None:
            return self
        if self.condition is None:
            self.condition = condition
        else:
            self.condition = self.condition.combine(operator, condition)
        return self

    def where(self, *condition):
        """Replace the current condition."""
        self.condition = self._make_condition(*condition)
        return self

    def and_where(self, *condition):
        return self._add_condition("AND", self._make_condition(*condition))

    def or_where(self, *condition):
        return self._add_condition("OR", self._make_condition(*condition))

    def where_in(self, column, values):
        return self._add_condition("AND", self._in_condition(column, values, "IN"))

    def or_where_in(self, column, values):
        return self._add_condition("OR", self._in_condition(column, values, "IN"))

    def where_not_in(self, column, values):
        return self._add_condition("AND", self._in_condition(column, values, "NOT IN"))

    def or_where_not_in(self, column, values):
        return self._add_condition("OR", self._in_condition(column, values, "NOT IN"))

    def where_null(self, column):
        return self._add_condition("AND", Condition(f"{self._quote_column(column)} IS NULL"))

    def or_where_null(self, column):
        return self._add_condition("OR", Condition(f"{self._quote_column(column)} IS NULL"))

    def where_not_null(self, column):
        return self._add_condition("AND", Condition(f"{self._quote_column(column)} IS NOT NULL"))

    def or_where_not_null(self, column):
        return self._add_condition("OR", Condition(f"{self._quote_column(column)} IS NOT NULL"))

    def where_between(self, column, start, end):
        sql = f"{self._quote_column(column)} BETWEEN {self.placeholder} AND {self.placeholder}"
        return self._add_condition("AND", Condition(sql, [start, end]))

    def or_where_between(self, column, start, end):
        sql = f"{self._quote_column(column)} BETWEEN {self.placeholder} AND {self.placeholder}"
        return self._add_condition("OR", Condition(sql, [start, end]))

    def where_column(self, column1: str, operator: str, column2: str):
        sql = f"{self._quote_column(column1)} {operator} {self._quote_column(column2)}"
        return self._add_condition("AND", Condition(sql))

    def or_where_column(self, column1: str, operator: str, column2: str):
        sql = f"{self._quote_column(column1)} {operator} {self._quote_column(column2)}"
        return self._add_condition("OR", Condition(sql))

    def where_exists(self, subquery: 'QueryBuilder'):
        sub_sql, sub_params = subquery.get()
        return self._add_condition("AND", Condition(f"EXISTS ({sub_sql})", sub_params))

    def where_not_exists(self, subquery: 'QueryBuilder'):
        sub_sql, sub_params = subquery.get()
        return self._add_condition("AND", Condition(f"NOT EXISTS ({sub_sql})", sub_params))

    def where_raw(self, raw_sql: str, params: Iterable[Any] = None):
        return self._add_condition("AND", Condition(raw_sql, params or ()))

    def or_where_raw(self, raw_sql: str, params: Iterable[Any] = None):
        return self._add_condition("OR", Condition(raw_sql, params or ()))

    # ----------------------------------------------------------------------
    # Joins
    # ----------------------------------------------------------------------

    def join(self, table: str, on=None, join_type: str = "INNER JOIN", alias: str = None):
        """
        `on` takes any condition form accepted by where(); a hash condition
        compares columns, e.g. {"customer.id": Raw('"order"."customer_id"')}.
        """
        on_condition = on if isinstance(on, Condition) or on is None else self._make_condition(on)
        self.joins.append(JoinClause(join_type.upper(), table, alias, on_condition))
        return self

    def inner_join(self, table: str, on=None, alias: str = None):
        return self.join(table, on, "INNER JOIN", alias)

    def left_join(self, table: str, on=None, alias: str = None):
        return self.join(table, on, "LEFT JOIN", alias)

    # ----------------------------------------------------------------------
    # Ordering, grouping, limits
    # ----------------------------------------------------------------------

    def order_by(self, column, direction="asc"):
        if isinstance(column, dict):
            for col, dir_ in column.items():
                self.order_by(col, dir_)
            return self

        if column:
            direction = (direction or "").upper()
            if direction not in ("ASC", "DESC", ""):
                raise ValueError("Direction must be 'ASC', 'DESC', or ''")

            # check only the first element of each tuple
            for i, (col, _) in enumerate(self.order_by_clauses):
                if col == column:
                    # update existing entry's direction
                    self.order_by_clauses[i] = (col, direction)
                    break
            else:
                self.order_by_clauses.append((column, direction))
        else:
            self.remove_ordering()

        return self

    def add_order_by(self, clauses: List[Tuple[Union[str, Raw], str]]):
        for column, direction in clauses:
            self.order_by(column, direction)
        return self

    def remove_ordering(self):
        self.order_by_clauses = []
        return self

    def group_by(self, *columns: Union[str, Raw]):
        self.group_by_columns.extend(columns)
        return self

    def having(self, *condition):
        self.having_condition = self._make_condition(*condition)
        return self

    def and_having(self, *condition):
        condition = self._make_condition(*condition)
        if condition is not None:
            self.having_condition = condition if self.having_condition is None \
                else self.having_condition.combine("AND", condition)
        return self

    def limit(self, count: Optional[int]):
        self.limit_count = count
        return self

    def offset(self, count: Optional[int]):
        self.offset_count = count
        return self

    def remove_limit(self):
        """
        Remove both LIMIT and OFFSET constraints from the query.
        """
        self.limit_count = None
        self.offset_count = None
        return self

    def for_page(self, page: int, per_page: int = 10):
        if page < 1 or per_page < 1:
            raise ValueError("Page and per_page must be >= 1")
        return self.limit(per_page).offset((page - 1) * per_page)

    def as_count(self, column: str = "*") -> "QueryBuilder":
        """
        Copy of this query selecting COUNT(column) AS count, without ordering
        or limits. Distinct or grouped queries are wrapped in a subquery.
        """
        inner = self.clone().remove_ordering().remove_limit()
        expression = "*" if column == "*" else self._quote_column(column)

        if inner.distinct_flag or inner.group_by_columns:
            sub_sql, sub_params = inner.get()
            counter = QueryBuilder(self.db)
            counter.table_name = Raw(f"({sub_sql})")
            counter.table_alias = "c"
            counter.columns = [Raw("COUNT(*) AS count")]
            counter._from_params = sub_params
            return counter

        inner.columns = [Raw(f"COUNT({expression}) AS count")]
        return inner

    # ----------------------------------------------------------------------
    # Compilation
    # ----------------------------------------------------------------------

    def _build_from(self) -> str:
        if isinstance(self.table_name, Raw):
            sql = self.table_name.expression
        else:
            sql = self._quote_table(self.table_name)
        if self.table_alias and self.table_alias != self.table_name:
            sql += f" {self._quote_table(self.table_alias)}"
        return sql

    def _build_joins(self, params: list) -> str:
        parts = []
        for join in self.joins:
            target = self._quote_table(join.table)
            if join.alias and join.alias != join.table:
                target += f" {self._quote_table(join.alias)}"
            sql = f"{join.join_type} {target}"
            if join.on is not None:
                sql += f" ON {join.on.sql}"
                params.extend(join.on.params)
            parts.append(sql)
        return " ".join(parts)

    def _build_conditions(self, params: list) -> str:
        if self.condition is None:
            return ""
        params.extend(self.condition.params)
        return f"WHERE {self.condition.sql}"

    def _build_limit(self) -> str:
        if self.limit_count is None and self.offset_count is None:
            return ""
        if self.driver == "mssql":
            sql = f"OFFSET {int(self.offset_count or 0)} ROWS"
            if self.limit_count is not None:
                sql += f" FETCH NEXT {int(self.limit_count)} ROWS ONLY"
            return sql
        if self.limit_count is not None:
            sql = f"LIMIT {int(self.limit_count)}"
        elif self.driver == "mysql":
            sql = "LIMIT 18446744073709551615"
        elif self.driver == "sqlite":
            sql = "LIMIT -1"
        else:
            sql = ""
        if self.offset_count:
            sql += f" OFFSET {int(self.offset_count)}"
        return sql.strip()

    def to_sql(self, params: list = None) -> str:
        params = [] if params is None else params
        params.extend(getattr(self, "_from_params", ()))

        columns = ", ".join(self._quote_column(c) for c in self.columns) if self.columns else "*"
        sql = ("SELECT DISTINCT " if self.distinct_flag else "SELECT ") + columns
        sql += f" FROM {self._build_from()}"

        parts = [sql, self._build_joins(params), self._build_conditions(params)]

        if self.group_by_columns:
            parts.append("GROUP BY " + ", ".join(self._quote_column(c) for c in self.group_by_columns))

        if self.having_condition is not None:
            parts.append(f"HAVING {self.having_condition.sql}")
            params.extend(self.having_condition.params)

        if self.order_by_clauses:
            parts.append("ORDER BY " + ", ".join(
                f"{self._quote_column(col)} {direction}".strip() for col, direction in self.order_by_clauses
            ))

        parts.append(self._build_limit())
        return " ".join(part for part in parts if part)

    def get(self) -> Tuple[str, list]:
        params: list = []
        sql = self.to_sql(params)
        return sql, params

    def substitute_params(self, sql: str, params: list[Any]):
        for param in params:
            if isinstance(param, str):
                value = "'" + param.replace("'", "''") + "'"
            elif param is None:
                value = "NULL"
            else:
                value = str(param)
            sql = sql.replace(self.placeholder, value, 1)
        return sql

    def to_raw_sql(self):
        sql, params = self.get()
        return self.substitute_params(sql, params)

    # ----------------------------------------------------------------------
    # Write statements
    # ----------------------------------------------------------------------

    def _write_value(self, value) -> Tuple[str, list]:
        if isinstance(value, Raw):
            return value.expression, value.params
        return self.placeholder, [value]

    def insert(self, data: dict[str, Any]) -> Tuple[str, list]:
        table = self._quote_table(self.table_name)
        if not data:
            if self.driver == "mysql":
                return f"INSERT INTO {table} () VALUES ()", []
            return f"INSERT INTO {table} DEFAULT VALUES", []

        columns, marks, params = [], [], []
        for column, value in data.items():
            columns.append(self._quote_column(column))
            mark, value_params = self._write_value(value)
            marks.append(mark)
            params.extend(value_params)
        return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(marks)})", params

    def update(self, values: dict[str, Any]) -> Tuple[str, list]:
        assignments, params = [], []
        for column, value in values.items():
            mark, value_params = self._write_value(value)
            assignments.append(f"{self._quote_column(column)} = {mark}")
            params.extend(value_params)

        sql = f"UPDATE {self._quote_table(self.table_name)} SET {', '.join(assignments)}"
        where_clause = self._build_conditions(params)
        if where_clause:
            sql += f" {where_clause}"
        return sql, params

    def delete(self) -> Tuple[str, list]:
        params: list = []
        sql = f"DELETE FROM {self._quote_table(self.table_name)}"
        where_clause = self._build_conditions(params)
        if where_clause:
            sql += f" {where_clause}"
        return sql, params

    def upsert(self,
               insert_values: dict[str, Any],
               update_values: Union[dict[str, Any], bool],
               unique_by: List[str],
               returning: bool = False) -> Tuple[str, list]:
        """
        INSERT that falls back to an UPDATE when a row with the same unique_by
        values exists. update_values=True updates every inserted non-key column,
        False leaves the existing row untouched.
        """
        sql, params = self.insert(insert_values)

        if update_values is True:
            update_columns = {c: None for c in insert_values if c not in unique_by}
            use_excluded = True
        elif update_values:
            update_columns = dict(update_values)
            use_excluded = False
        else:
            update_columns = {}
            use_excluded = False

        if self.driver == "mysql":
            if not update_columns:
                return sql.replace("INSERT INTO", "INSERT IGNORE INTO", 1), params
            assignments = []
            for column, value in update_columns.items():
                quoted = self._quote_column(column)
                if use_excluded:
                    assignments.append(f"{quoted} = VALUES({quoted})")
                else:
                    mark, value_params = self._write_value(value)
                    assignments.append(f"{quoted} = {mark}")
                    params.extend(value_params)
            return f"{sql} ON DUPLICATE KEY UPDATE {', '.join(assignments)}", params

        target = ", ".join(self._quote_column(c) for c in unique_by)
        if not update_columns:
            sql += f" ON CONFLICT ({target}) DO NOTHING"
        else:
            assignments = []
            for column, value in update_columns.items():
                quoted = self._quote_column(column)
                if use_excluded:
                    assignments.append(f"{quoted} = excluded.{quoted}")
                else:
                    mark, value_params = self._write_value(value)
                    assignments.append(f"{quoted} = {mark}")
                    params.extend(value_params)
            sql += f" ON CONFLICT ({target}) DO UPDATE SET {', '.join(assignments)}"

        if returning:
            sql += " RETURNING *"
        return sql, params
