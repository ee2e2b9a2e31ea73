import re
from decimal import Decimal
from types import SimpleNamespace

import pytest

import data_integrator
from domain.models import DiscountDefinition, LineItem

ID_COLUMNS = {"bills": "billid", "customers": "customerid", "bill_items": "itemid"}


class FakeQuery:
    """Just enough of the postgrest query builder for data_integrator."""

    def __init__(self, db: "FakeSupabase", table_name: str):
        self.db = db
        self.table_name = table_name
        self.op = None
        self.payload = None
        self.filters = []
        self.or_expr = None
        self.order_by = None
        self.limit_n = None
        self.on_conflict = None

    # verbs
    def select(self, columns="*"):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def upsert(self, rows, on_conflict=None):
        self.op, self.payload = "upsert", rows
        self.on_conflict = on_conflict
        self.db.upserts.append((self.table_name, on_conflict, rows))
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters / modifiers
    def eq(self, col, val):
        self.filters.append(lambda r: r.get(col) == val)
        return self

    def gt(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) > val)
        return self

    def ilike(self, col, pattern):
        regex = re.compile("^" + ".*".join(re.escape(p) for p in pattern.split("%")) + "$", re.I)
        self.filters.append(lambda r: r.get(col) is not None and bool(regex.match(str(r.get(col)))))
        return self

    def or_(self, expr):
        self.or_expr = expr
        return self

    def order(self, col, desc=False):
        self.order_by = (col, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        if (self.table_name, self.op) in self.db.fail_on:
            raise Exception(f"{self.table_name} {self.op} failed")

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "select":
            data = [dict(r) for r in rows if self._matches(r)]
            if self.order_by:
                col, desc = self.order_by
                data.sort(key=lambda r: r.get(col), reverse=desc)
            if self.limit_n is not None:
                data = data[:self.limit_n]
            return SimpleNamespace(data=data, error=None)

        if self.op in ("insert", "upsert"):
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            id_col = ID_COLUMNS.get(self.table_name, "id")
            inserted = []
            for r in new_rows:
                row = dict(r)
                existing = None
                if self.on_conflict:
                    existing = next(
                        (o for o in rows if o.get(self.on_conflict) == row.get(self.on_conflict)), None
                    )
                if existing is not None:
                    existing.update(row)
                    inserted.append(dict(existing))
                    continue
                if row.get(id_col) is None:
                    self.db.next_id += 1
                    row[id_col] = self.db.next_id
                rows.append(row)
                inserted.append(dict(row))
            return SimpleNamespace(data=inserted, error=None)

        if self.op == "update":
            updated = []
            for r in rows:
                if self._matches(r):
                    r.update(self.payload)
                    updated.append(dict(r))
            return SimpleNamespace(data=updated, error=None)

        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed, error=None)

        raise AssertionError(f"unsupported op {self.op}")


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.upserts = []
        self.queries = []
        self.fail_on = set()
        self.next_id = 100

    def schema(self, name):
        return self

    def table(self, name):
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeSupabase()
    monkeypatch.setattr(data_integrator, "_client", lambda: db)
    return db


def make_item(**kwargs) -> LineItem:
    values = {
        "quantity": 1,
        "unit_price": Decimal("0"),
        "discount_percent": Decimal("0"),
        "tax_rate": Decimal("12"),
    }
    values.update(kwargs)
    for key in ("unit_price", "discount_percent", "tax_rate", "stitching_charge", "alteration_charge"):
        if key in values and not isinstance(values[key], Decimal):
            values[key] = Decimal(str(values[key]))
    return LineItem(**values)


def make_discount(code, kind, value=0, **kwargs) -> DiscountDefinition:
    for key in ("max_discount", "min_total"):
        if kwargs.get(key) is not None:
            kwargs[key] = Decimal(str(kwargs[key]))
    return DiscountDefinition(code=code, kind=kind, value=Decimal(str(value)), **kwargs)
