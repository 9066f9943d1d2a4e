import logging
import os
import pprint
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable

from dotenv import load_dotenv

load_dotenv()


class RowSet(list):
    """
    Rows returned by a statement, plus the cursor metadata writes need.
    """

    def __init__(self, rows: Iterable[dict[str, Any]] = (), rowcount: int = -1, lastrowid: Any = None):
        super().__init__(rows)
        self.rowcount = rowcount
        self.lastrowid = lastrowid


class Database:
    """
    Connection collaborator used by queries and records.

    Subclasses implement connect(), _execute() and primary_key_columns();
    everything else (logging, quoting, transactions) lives here.
    """
    connection = None
    connection_string: str = ""
    driver: str = ""
    placeholder: str = "%s"
    identifier_quote: tuple[str, str] = ('"', '"')

    def __init__(self, connection_string: str = None):
        if connection_string is not None:
            self.connection_string = connection_string
        self._transaction_level = 0
        self._schema_cache: dict[str, list[str]] = {}
        self.logging_enabled = os.getenv("ORM_DEBUG", 'false').lower() == "true"
        self.logger = logging.getLogger("orm.sql")
        if not self.logger.handlers:  # prevent duplicate handlers
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s"
            ))
            self.logger.addHandler(handler)
        self.logger.setLevel(logging.DEBUG)

    def _log_query(self, sql: str, params: tuple, elapsed_ms: float):
        if self.logging_enabled:
            log_entry = {
                "event": "sql_query",
                "sql": sql,
                "params": params,
                "elapsed_ms": round(elapsed_ms, 2),
                "database": self.__class__,
            }
            # pretty print dict instead of raw string
            self.logger.debug("\n" + pprint.pformat(log_entry, indent=2, width=80, compact=False) + "\n")

    # ----------------------------------------------------------------------
    # Driver hooks
    # ----------------------------------------------------------------------

    def connect(self):
        raise NotImplementedError(f"{self.__class__.__name__} must implement connect()")

    def _execute(self, sql: str, params: tuple) -> RowSet:
        raise NotImplementedError(f"{self.__class__.__name__} must implement _execute()")

    def primary_key_columns(self, table_name: str) -> list[str]:
        raise NotImplementedError(f"{self.__class__.__name__} must implement primary_key_columns()")

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    # ----------------------------------------------------------------------
    # Statements
    # ----------------------------------------------------------------------

    def execute(self, sql: str, params: Iterable[Any] = None) -> RowSet:
        params = tuple(params or ())
        start = time.perf_counter()
        result = self._execute(sql, params)
        self._log_query(sql, params, (time.perf_counter() - start) * 1000)
        return result

    def query(self, sql: str, params: Iterable[Any] = None) -> list[dict[str, Any]]:
        return list(self.execute(sql, params))

    def driver_name(self) -> str:
        return self.driver

    def quote_identifier(self, name: str) -> str:
        """
        Quote a table or column name. Dotted names are quoted per part,
        "*" and already-quoted parts are left alone.
        """
        left, right = self.identifier_quote
        parts = []
        for part in name.split("."):
            if part == "*" or (part.startswith(left) and part.endswith(right)):
                parts.append(part)
            else:
                parts.append(f"{left}{part}{right}")
        return ".".join(parts)

    # ----------------------------------------------------------------------
    # Transactions
    # ----------------------------------------------------------------------

    def _transaction_statement(self, sql: str):
        self.connect().execute(sql)

    def begin(self):
        if self._transaction_level == 0:
            self._transaction_statement("BEGIN")
        else:
            self._transaction_statement(f"SAVEPOINT sp_{self._transaction_level}")
        self._transaction_level += 1

    def commit(self):
        if self._transaction_level == 0:
            raise RuntimeError("No active transaction to commit.")
        self._transaction_level -= 1
        if self._transaction_level == 0:
            self._transaction_statement("COMMIT")
        else:
            self._transaction_statement(f"RELEASE SAVEPOINT sp_{self._transaction_level}")

    def rollback(self):
        if self._transaction_level == 0:
            raise RuntimeError("No active transaction to roll back.")
        self._transaction_level -= 1
        if self._transaction_level == 0:
            self._transaction_statement("ROLLBACK")
        else:
            self._transaction_statement(f"ROLLBACK TO SAVEPOINT sp_{self._transaction_level}")

    @property
    def in_transaction(self) -> bool:
        return self._transaction_level > 0

    @contextmanager
    def transaction(self):
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def with_transaction(self, fn: Callable[["Database"], Any]) -> Any:
        with self.transaction():
            return fn(self)
