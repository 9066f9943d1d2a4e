import os
import sqlite3

from activeorm.core_services.Database import Database, RowSet


def dict_factory(cursor, row):
    """Convert row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


class Sqlite3Database(Database):
    driver = "sqlite"
    placeholder = "?"
    connection_string: str = ":memory:"

    @classmethod
    def from_env(cls) -> "Sqlite3Database":
        return cls(os.getenv("ORM_DATABASE", ":memory:"))

    def connect(self):
        if self.connection is None:
            # transactions are issued explicitly by Database.begin()
            self.connection = sqlite3.connect(self.connection_string, isolation_level=None)
            self.connection.row_factory = dict_factory
        return self.connection

    def _execute(self, sql: str, params: tuple) -> RowSet:
        cursor = self.connect().execute(sql, params)
        rows = cursor.fetchall() if cursor.description is not None else []
        return RowSet(rows, rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)

    def executescript(self, script: str):
        self.connect().executescript(script)

    def primary_key_columns(self, table_name: str) -> list[str]:
        if table_name not in self._schema_cache:
            rows = self.connect().execute(f"PRAGMA table_info({self.quote_identifier(table_name)})").fetchall()
            keyed = sorted((row for row in rows if row["pk"]), key=lambda row: row["pk"])
            self._schema_cache[table_name] = [row["name"] for row in keyed]
        return self._schema_cache[table_name]
