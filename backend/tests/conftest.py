"""
In-memory stand-in for the Supabase client, enough of the PostgREST query
builder for app.db: select/insert/update/upsert/delete with eq, is_, gte, lte,
order and limit. Unique keys raise the same APIError code Postgres sends.
"""
import itertools
import uuid
from collections import defaultdict

import pytest
from postgrest.exceptions import APIError

UNIQUE_KEYS = {
    "profiles": [("user_id",)],
    "player_stats": [("user_id",)],
    "quest_templates": [("id",)],
    "daily_quests": [("id",), ("user_id", "quest_date", "template_id")],
    "quest_generations": [("user_id", "quest_date")],
    "streak_history": [("id",), ("user_id", "date")],
}
GENERATED_IDS = {"quest_templates", "daily_quests", "streak_history"}


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.count = len(data)


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.orders = []
        self.row_limit = None

    # operations
    def select(self, *columns, **kwargs):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def upsert(self, rows, on_conflict=""):
        self.op, self.payload = "upsert", rows
        self.on_conflict = tuple(c.strip() for c in on_conflict.split(",") if c.strip())
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def is_(self, column, value):
        expected = {"null": None, "true": True, "false": False}[str(value).lower()]
        if expected is None:
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) == expected)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        return FakeResponse(self.client.run(self))


class FakeSupabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.failures = []
        self.hooks = []
        self._seq = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    # test helpers
    def seed(self, table, *rows):
        for row in rows:
            self.tables[table].append(self._with_defaults(table, dict(row)))

    def rows(self, table, **match):
        return [dict(r) for r in self.tables[table] if all(r.get(k) == v for k, v in match.items())]

    def row(self, table, **match):
        found = self.rows(table, **match)
        assert len(found) == 1, f"expected one {table} row for {match}, got {len(found)}"
        return found[0]

    def fail(self, table, op, message="connection reset", times=1):
        """Make the next `times` matching operations raise APIError."""
        self.failures.append({"table": table, "op": op, "message": message, "left": times})

    def before(self, table, op, callback):
        """Run callback(self) once, right before the next matching operation."""
        self.hooks.append((table, op, callback))

    # engine
    def _with_defaults(self, table, row):
        if table in GENERATED_IDS and not row.get("id"):
            row["id"] = str(uuid.uuid4())
        row.setdefault("created_at", next(self._seq))
        return row

    def _check_unique(self, table, row, existing):
        for key in UNIQUE_KEYS.get(table, []):
            if any(row.get(c) is None for c in key):
                continue
            for other in existing:
                if other is not row and all(other.get(c) == row.get(c) for c in key):
                    raise APIError({
                        "message": f'duplicate key value violates unique constraint "{table}_{"_".join(key)}_key"',
                        "code": "23505",
                        "hint": None,
                        "details": None,
                    })

    def run(self, query):
        for hook in list(self.hooks):
            if hook[0] == query.table and hook[1] == query.op:
                self.hooks.remove(hook)
                hook[2](self)

        for failure in self.failures:
            if failure["table"] == query.table and failure["op"] == query.op and failure["left"] > 0:
                failure["left"] -= 1
                raise APIError({"message": failure["message"], "code": "08006", "hint": None, "details": None})

        table = self.tables[query.table]

        if query.op == "select":
            found = [r for r in table if query.matches(r)]
            for column, desc in reversed(query.orders):
                found.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
            if query.row_limit is not None:
                found = found[:query.row_limit]
            return [dict(r) for r in found]

        if query.op == "insert":
            payload = query.payload if isinstance(query.payload, list) else [query.payload]
            new_rows = [self._with_defaults(query.table, dict(r)) for r in payload]
            for i, row in enumerate(new_rows):
                self._check_unique(query.table, row, table + new_rows[:i])
            table.extend(new_rows)
            return [dict(r) for r in new_rows]

        if query.op == "update":
            found = [r for r in table if query.matches(r)]
            for row in found:
                row.update(query.payload)
            return [dict(r) for r in found]

        if query.op == "upsert":
            payload = query.payload if isinstance(query.payload, list) else [query.payload]
            written = []
            for values in payload:
                target = next(
                    (r for r in table if all(r.get(c) == values.get(c) for c in query.on_conflict)),
                    None,
                ) if query.on_conflict else None
                if target is None:
                    target = self._with_defaults(query.table, dict(values))
                    self._check_unique(query.table, target, table)
                    table.append(target)
                else:
                    target.update(values)
                written.append(dict(target))
            return written

        if query.op == "delete":
            found = [r for r in table if query.matches(r)]
            self.tables[query.table] = [r for r in table if not query.matches(r)]
            return [dict(r) for r in found]

        raise AssertionError(f"unsupported operation {query.op}")


USER_ID = "0b7e6a1c-3f2d-4c8e-9a51-2d6f0c4b9e17"
STAT_TYPES = ("strength", "agility", "vitality", "intelligence", "discipline", "charisma", "wealth")


def make_profile(user_id=USER_ID, **overrides):
    profile = {
        "user_id": user_id,
        "display_name": "Jinwoo",
        "total_xp": 0,
        "player_level": 1,
        "current_streak": 0,
        "longest_streak": 0,
        "penalty_points": 0,
        "streak_freeze_available": 0,
        "last_quest_date": None,
        "last_penalty_date": None,
        "last_freeze_date": None,
    }
    profile.update(overrides)
    return profile


def make_stats(user_id=USER_ID, **xp):
    stats = {"user_id": user_id}
    for stat in STAT_TYPES:
        value = xp.get(stat, 0)
        stats[f"{stat}_xp"] = value
        stats[stat] = min(value // 100 + 1, 100)
    return stats


def make_templates(per_stat=2, xp_reward=20):
    return [
        {
            "id": f"tpl-{stat}-{n}",
            "title": f"{stat.title()} drill {n}",
            "description": f"Train {stat}",
            "stat_type": stat,
            "xp_reward": xp_reward,
            "is_active": True,
        }
        for stat in STAT_TYPES
        for n in range(1, per_stat + 1)
    ]


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def db(fake_db):
    """A registered player with fresh stats and two 20 XP templates per stat."""
    fake_db.seed("profiles", make_profile())
    fake_db.seed("player_stats", make_stats())
    fake_db.seed("quest_templates", *make_templates())
    return fake_db
