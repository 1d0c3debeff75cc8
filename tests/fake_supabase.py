"""In-memory stand-in for the Supabase/PostgREST query builder.

Supports the subset of the builder the backend uses (select / insert /
update / upsert / delete with eq, in_, order, range and limit filters) and
enforces the natural-key unique indexes from the migrations, raising
``postgrest.exceptions.APIError`` with code 23505 on violation.
"""

import copy
import uuid
from dataclasses import dataclass

from postgrest.exceptions import APIError

UNIQUE_INDEXES = {
    "api_keys": [("key_hash",)],
    "manga": [("user_id", "source", "url")],
    "chapters": [("manga_id", "url")],
    "categories": [("user_id", "name")],
    "manga_categories": [("manga_id", "category_id")],
    "tracking": [("manga_id", "sync_id")],
    "history": [("manga_id", "chapter_url")],
    "preferences": [("user_id", "key")],
    "source_preferences": [("user_id", "source_key")],
    "extension_repos": [("user_id", "base_url")],
    "saved_searches": [("user_id", "source", "name")],
    "feeds": [("user_id", "source")],
}

# Join tables have a composite primary key and no id column
NO_ID_TABLES = {"manga_categories"}


def unique_violation(table: str, columns: tuple) -> APIError:
    return APIError({
        "code": "23505",
        "message": f'duplicate key value violates unique constraint "{table}_{"_".join(columns)}_idx"',
        "details": None,
        "hint": None,
    })


@dataclass
class FakeResponse:
    data: list
    count: int | None = None


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.count_mode = None
        self.payload = None
        self.on_conflict = None
        self.ignore_duplicates = False
        self.filters = []
        self.orders = []
        self.start = None
        self.end = None
        self.max_rows = None

    # -- actions -------------------------------------------------------------

    def select(self, columns: str = "*", count: str | None = None):
        self.action = "select"
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, data):
        self.action = "insert"
        self.payload = data
        return self

    def update(self, data: dict):
        self.action = "update"
        self.payload = data
        return self

    def upsert(self, data, on_conflict: str | None = None, ignore_duplicates: bool = False, **kwargs):
        self.action = "upsert"
        self.payload = data
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def delete(self):
        self.action = "delete"
        return self

    # -- filters -------------------------------------------------------------

    def eq(self, column: str, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column: str, desc: bool = False, **kwargs):
        self.orders.append((column, desc))
        return self

    def range(self, start: int, end: int):
        self.start, self.end = start, end
        return self

    def limit(self, size: int):
        self.max_rows = size
        return self

    # -- execution -----------------------------------------------------------

    def _matching(self) -> list[dict]:
        return [row for row in self.db.rows(self.table) if all(f(row) for f in self.filters)]

    def _project(self, row: dict) -> dict:
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [name.strip() for name in self.columns.split(",")]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.action))
        failure = self.db.failures.get(self.table)
        if failure is not None:
            raise failure

        if self.action == "select":
            rows = self._matching()
            for column, desc in reversed(self.orders):
                present = [r for r in rows if r.get(column) is not None]
                missing = [r for r in rows if r.get(column) is None]
                present.sort(key=lambda r: r[column], reverse=desc)
                rows = present + missing
            total = len(rows)
            if self.start is not None:
                rows = rows[self.start:self.end + 1]
            if self.max_rows is not None:
                rows = rows[:self.max_rows]
            return FakeResponse(
                data=[self._project(r) for r in rows],
                count=total if self.count_mode else None,
            )

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db.insert_row(self.table, item) for item in items]
            return FakeResponse(data=copy.deepcopy(created))

        if self.action == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            conflict_columns = tuple(c.strip() for c in (self.on_conflict or "id").split(","))
            written = []
            for item in items:
                existing = self.db.find_by(self.table, conflict_columns, item)
                if existing is None:
                    written.append(self.db.insert_row(self.table, item))
                elif not self.ignore_duplicates:
                    existing.update(copy.deepcopy(item))
                    written.append(existing)
            return FakeResponse(data=copy.deepcopy(written))

        if self.action == "update":
            rows = self._matching()
            for row in rows:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(data=copy.deepcopy(rows))

        if self.action == "delete":
            rows = self._matching()
            self.db.tables[self.table] = [r for r in self.db.rows(self.table) if r not in rows]
            return FakeResponse(data=copy.deepcopy(rows))

        raise AssertionError(f"unsupported action {self.action}")


class FakeSupabase:
    """Minimal in-memory database exposing ``table(name)``."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        # Called with (table, row) right before an insert is applied
        self.before_insert = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def find_by(self, table: str, columns: tuple, values: dict) -> dict | None:
        for row in self.rows(table):
            if all(row.get(c) == values.get(c) for c in columns):
                return row
        return None

    def insert_row(self, table: str, item: dict) -> dict:
        row = copy.deepcopy(item)
        if table not in NO_ID_TABLES:
            row.setdefault("id", str(uuid.uuid4()))
        if self.before_insert is not None:
            hook, self.before_insert = self.before_insert, None
            hook(table, row)
        for columns in UNIQUE_INDEXES.get(table, []):
            if self.find_by(table, columns, row) is not None:
                raise unique_violation(table, columns)
        self.rows(table).append(row)
        return row

    def seed(self, table: str, row: dict) -> dict:
        """Insert a row directly (bypassing hooks and failures)."""
        row = copy.deepcopy(row)
        if table not in NO_ID_TABLES:
            row.setdefault("id", str(uuid.uuid4()))
        self.rows(table).append(row)
        return row
