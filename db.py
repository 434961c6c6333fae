import sqlite3
import aiosqlite
import datetime
import logging
from contextlib import contextmanager, asynccontextmanager
from typing import Iterable, List, Optional, Tuple

from config import DEFAULT_DB_PATH, YamlConfig
from models import LoggedSet
from settings_schema import validate_settings

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "categories": (
            """CREATE TABLE categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );""",
            ["id", "name", "created_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    category_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE SET NULL
                );""",
            ["id", "name", "category_id", "created_at"],
        ),
        "routines": (
            """CREATE TABLE routines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    user_id TEXT,
                    created_at TEXT NOT NULL
                );""",
            ["id", "name", "user_id", "created_at"],
        ),
        "routine_exercises": (
            """CREATE TABLE routine_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    routine_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY(routine_id) REFERENCES routines(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
                );""",
            ["id", "routine_id", "exercise_id", "position"],
        ),
        "sessions": (
            """CREATE TABLE sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    routine_id INTEGER,
                    user_id TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    duration_seconds INTEGER,
                    FOREIGN KEY(routine_id) REFERENCES routines(id) ON DELETE SET NULL
                );""",
            ["id", "routine_id", "user_id", "created_at", "completed_at", "duration_seconds"],
        ),
        "set_logs": (
            """CREATE TABLE set_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    reps INTEGER NOT NULL,
                    weight_kg REAL NOT NULL,
                    set_number INTEGER NOT NULL,
                    notes TEXT,
                    set_type TEXT NOT NULL DEFAULT 'normal',
                    is_warmup INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "session_id",
                "exercise_id",
                "reps",
                "weight_kg",
                "set_number",
                "notes",
                "set_type",
                "is_warmup",
            ],
        ),
        "goals": (
            """CREATE TABLE goals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    exercise_id INTEGER NOT NULL,
                    target_weight REAL NOT NULL,
                    achieved INTEGER NOT NULL DEFAULT 0,
                    achieved_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
                );""",
            ["id", "exercise_id", "target_weight", "achieved", "achieved_at", "created_at"],
        ),
        "profiles": (
            """CREATE TABLE profiles (
                    id TEXT PRIMARY KEY,
                    username TEXT UNIQUE,
                    display_name TEXT,
                    bio TEXT,
                    is_public INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT
                );""",
            ["id", "username", "display_name", "bio", "is_public", "updated_at"],
        ),
        "friendships": (
            """CREATE TABLE friendships (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    friend_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL
                );""",
            ["id", "user_id", "friend_id", "status", "created_at"],
        ),
        "body_measurements": (
            """CREATE TABLE body_measurements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    weight_kg REAL,
                    chest_cm REAL,
                    waist_cm REAL,
                    hips_cm REAL,
                    bicep_left_cm REAL,
                    bicep_right_cm REAL,
                    thigh_left_cm REAL,
                    thigh_right_cm REAL,
                    body_fat_percent REAL
                );""",
            [
                "id",
                "date",
                "weight_kg",
                "chest_cm",
                "waist_cm",
                "hips_cm",
                "bicep_left_cm",
                "bicep_right_cm",
                "thigh_left_cm",
                "thigh_right_cm",
                "body_fat_percent",
            ],
        ),
        "shared_routines": (
            """CREATE TABLE shared_routines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    routine_id INTEGER NOT NULL,
                    user_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT,
                    is_public INTEGER NOT NULL DEFAULT 1,
                    import_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(routine_id) REFERENCES routines(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "routine_id",
                "user_id",
                "title",
                "description",
                "is_public",
                "import_count",
                "created_at",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys=off;")
            conn.execute("PRAGMA legacy_alter_table=on;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            conn.execute("PRAGMA legacy_alter_table=off;")
            conn.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        logger.info("Migrating table %s", table)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "set_type":
                        return "'normal'"
                    if col == "set_number":
                        return "1"
                    if col == "status":
                        return "'pending'"
                    if col in ("position", "is_warmup", "achieved", "import_count", "is_public"):
                        return "0"
                    if col == "created_at":
                        return f"'{utc_now()}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _init_settings(self) -> None:
        defaults = {
            "weight_unit": "kg",
            "rest_timer_default": "90",
            "weight_increment": "2.5",
            "day_streak_gap": "2",
            "language": "en",
            "timezone": "UTC",
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _exists(self, table: str, row_id) -> bool:
        rows = self.fetch_all(f"SELECT 1 FROM {table} WHERE id = ?;", (row_id,))
        return bool(rows)

    @staticmethod
    def _placeholders(values: Iterable) -> str:
        return ", ".join("?" for _ in values)


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)


class AsyncDashboardRepository(AsyncBaseRepository):
    """Async read-only queries used to assemble the dashboard."""

    _COUNTABLE = {"routines", "exercises", "sessions", "categories", "set_logs"}

    async def count(self, table: str) -> int:
        if table not in self._COUNTABLE:
            raise ValueError(f"cannot count table {table}")
        rows = await self.fetch_all(f"SELECT COUNT(*) FROM {table};")
        return int(rows[0][0]) if rows else 0

    async def recent_routines(self, limit: int = 3) -> list[tuple[int, str]]:
        rows = await self.fetch_all(
            "SELECT id, name FROM routines ORDER BY created_at DESC, id DESC LIMIT ?;",
            (limit,),
        )
        return [(int(r[0]), r[1]) for r in rows]


class CategoryRepository(BaseRepository):
    """Repository for exercise categories."""

    def add(self, name: str) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("category name required")
        if self.fetch_all("SELECT id FROM categories WHERE name = ?;", (name,)):
            raise ValueError("category exists")
        return self.execute(
            "INSERT INTO categories (name, created_at) VALUES (?, ?);",
            (name, utc_now()),
        )

    def fetch_all_categories(self) -> list[tuple[int, str]]:
        rows = self.fetch_all("SELECT id, name FROM categories ORDER BY name;")
        return [(int(r[0]), r[1]) for r in rows]

    def rename(self, category_id: int, name: str) -> None:
        if not self._exists("categories", category_id):
            raise ValueError("category not found")
        name = (name or "").strip()
        if not name:
            raise ValueError("category name required")
        self.execute(
            "UPDATE categories SET name = ? WHERE id = ?;", (name, category_id)
        )

    def delete(self, category_id: int) -> None:
        if not self._exists("categories", category_id):
            raise ValueError("category not found")
        self.execute("DELETE FROM categories WHERE id = ?;", (category_id,))


class ExerciseRepository(BaseRepository):
    """Repository for exercise definitions."""

    def add(self, name: str, category_id: Optional[int] = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("exercise name required")
        if category_id is not None and not self._exists("categories", category_id):
            raise ValueError("category not found")
        return self.execute(
            "INSERT INTO exercises (name, category_id, created_at) VALUES (?, ?, ?);",
            (name, category_id, utc_now()),
        )

    def fetch_all_exercises(
        self, category_id: Optional[int] = None
    ) -> list[tuple[int, str, Optional[int], Optional[str]]]:
        query = (
            "SELECT e.id, e.name, e.category_id, c.name FROM exercises e "
            "LEFT JOIN categories c ON c.id = e.category_id"
        )
        params: tuple = ()
        if category_id is not None:
            query += " WHERE e.category_id = ?"
            params = (category_id,)
        query += " ORDER BY e.name;"
        return [
            (int(r[0]), r[1], r[2], r[3]) for r in self.fetch_all(query, params)
        ]

    def fetch_detail(
        self, exercise_id: int
    ) -> tuple[str, Optional[int], Optional[str]]:
        rows = self.fetch_all(
            "SELECT e.name, e.category_id, c.name FROM exercises e "
            "LEFT JOIN categories c ON c.id = e.category_id WHERE e.id = ?;",
            (exercise_id,),
        )
        if not rows:
            raise ValueError("exercise not found")
        name, cat_id, cat_name = rows[0]
        return name, cat_id, cat_name

    def update(
        self,
        exercise_id: int,
        name: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> None:
        if not self._exists("exercises", exercise_id):
            raise ValueError("exercise not found")
        if name is not None:
            if not name.strip():
                raise ValueError("exercise name required")
            self.execute(
                "UPDATE exercises SET name = ? WHERE id = ?;",
                (name.strip(), exercise_id),
            )
        if category_id is not None:
            if not self._exists("categories", category_id):
                raise ValueError("category not found")
            self.execute(
                "UPDATE exercises SET category_id = ? WHERE id = ?;",
                (category_id, exercise_id),
            )

    def delete(self, exercise_id: int) -> None:
        if not self._exists("exercises", exercise_id):
            raise ValueError("exercise not found")
        self.execute("DELETE FROM exercises WHERE id = ?;", (exercise_id,))


class RoutineRepository(BaseRepository):
    """Repository for routines and their ordered exercises."""

    def create(self, name: str, user_id: Optional[str] = None) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("routine name required")
        return self.execute(
            "INSERT INTO routines (name, user_id, created_at) VALUES (?, ?, ?);",
            (name, user_id, utc_now()),
        )

    def fetch_all_routines(self) -> list[tuple[int, str, str]]:
        rows = self.fetch_all(
            "SELECT id, name, created_at FROM routines ORDER BY created_at DESC, id DESC;"
        )
        return [(int(r[0]), r[1], r[2]) for r in rows]

    def fetch_detail(self, routine_id: int) -> tuple[str, Optional[str], str]:
        rows = self.fetch_all(
            "SELECT name, user_id, created_at FROM routines WHERE id = ?;",
            (routine_id,),
        )
        if not rows:
            raise ValueError("routine not found")
        return rows[0][0], rows[0][1], rows[0][2]

    def rename(self, routine_id: int, name: str) -> None:
        if not self._exists("routines", routine_id):
            raise ValueError("routine not found")
        if not (name or "").strip():
            raise ValueError("routine name required")
        self.execute(
            "UPDATE routines SET name = ? WHERE id = ?;", (name.strip(), routine_id)
        )

    def delete(self, routine_id: int) -> None:
        if not self._exists("routines", routine_id):
            raise ValueError("routine not found")
        self.execute("DELETE FROM routines WHERE id = ?;", (routine_id,))

    def add_exercise(self, routine_id: int, exercise_id: int) -> int:
        if not self._exists("routines", routine_id):
            raise ValueError("routine not found")
        if not self._exists("exercises", exercise_id):
            raise ValueError("exercise not found")
        rows = self.fetch_all(
            "SELECT COALESCE(MAX(position), 0) + 1 FROM routine_exercises WHERE routine_id = ?;",
            (routine_id,),
        )
        position = int(rows[0][0]) if rows else 1
        return self.execute(
            "INSERT INTO routine_exercises (routine_id, exercise_id, position) VALUES (?, ?, ?);",
            (routine_id, exercise_id, position),
        )

    def remove_exercise(self, routine_id: int, exercise_id: int) -> None:
        self.execute(
            "DELETE FROM routine_exercises WHERE routine_id = ? AND exercise_id = ?;",
            (routine_id, exercise_id),
        )

    def set_exercises(self, routine_id: int, exercise_ids: list[int]) -> None:
        """Replace the routine's exercises with ``exercise_ids`` in order."""
        if not self._exists("routines", routine_id):
            raise ValueError("routine not found")
        with self._connection() as conn:
            conn.execute(
                "DELETE FROM routine_exercises WHERE routine_id = ?;", (routine_id,)
            )
            for pos, ex_id in enumerate(exercise_ids, start=1):
                conn.execute(
                    "INSERT INTO routine_exercises (routine_id, exercise_id, position) VALUES (?, ?, ?);",
                    (routine_id, ex_id, pos),
                )

    def fetch_exercises(
        self, routine_id: int
    ) -> list[tuple[int, str, Optional[str], int]]:
        """Return ``(exercise_id, name, category, position)`` in routine order."""
        rows = self.fetch_all(
            "SELECT e.id, e.name, c.name, re.position FROM routine_exercises re "
            "JOIN exercises e ON e.id = re.exercise_id "
            "LEFT JOIN categories c ON c.id = e.category_id "
            "WHERE re.routine_id = ? ORDER BY re.position, re.id;",
            (routine_id,),
        )
        return [(int(r[0]), r[1], r[2], int(r[3])) for r in rows]


class SessionRepository(BaseRepository):
    """Repository for completed workout sessions."""

    _COLUMNS = (
        "s.id, s.routine_id, r.name, s.user_id, s.created_at, s.completed_at, s.duration_seconds"
    )

    def create(
        self,
        routine_id: Optional[int],
        user_id: Optional[str] = None,
        created_at: Optional[str] = None,
        completed_at: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> int:
        now = utc_now()
        return self.execute(
            "INSERT INTO sessions (routine_id, user_id, created_at, completed_at, duration_seconds) "
            "VALUES (?, ?, ?, ?, ?);",
            (routine_id, user_id, created_at or now, completed_at, duration_seconds),
        )

    @staticmethod
    def _as_dict(row: Tuple) -> dict:
        return {
            "id": int(row[0]),
            "routine_id": row[1],
            "routine_name": row[2],
            "user_id": row[3],
            "created_at": row[4],
            "completed_at": row[5],
            "duration_seconds": row[6],
        }

    def fetch_detail(self, session_id: int) -> dict:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM sessions s "
            "LEFT JOIN routines r ON r.id = s.routine_id WHERE s.id = ?;",
            (session_id,),
        )
        if not rows:
            raise ValueError("session not found")
        return self._as_dict(rows[0])

    def fetch_all_sessions(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        user_ids: Optional[list[str]] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict]:
        query = (
            f"SELECT {self._COLUMNS} FROM sessions s "
            "LEFT JOIN routines r ON r.id = s.routine_id"
        )
        where: list[str] = []
        params: list = []
        if start:
            where.append("s.created_at >= ?")
            params.append(start)
        if end:
            where.append("s.created_at <= ?")
            params.append(end)
        if user_ids is not None:
            if not user_ids:
                return []
            where.append(f"s.user_id IN ({self._placeholders(user_ids)})")
            params.extend(user_ids)
        if where:
            query += " WHERE " + " AND ".join(where)
        order = "DESC" if descending else "ASC"
        query += f" ORDER BY s.created_at {order}, s.id {order}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        query += ";"
        return [self._as_dict(r) for r in self.fetch_all(query, tuple(params))]

    def last_for_routine(self, routine_id: int) -> Optional[int]:
        rows = self.fetch_all(
            "SELECT id FROM sessions WHERE routine_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT 1;",
            (routine_id,),
        )
        return int(rows[0][0]) if rows else None

    def delete(self, session_id: int) -> None:
        if not self._exists("sessions", session_id):
            raise ValueError("session not found")
        self.execute("DELETE FROM sessions WHERE id = ?;", (session_id,))


class SetLogRepository(BaseRepository):
    """Repository for logged sets."""

    _COLUMNS = (
        "id, session_id, exercise_id, reps, weight_kg, set_number, notes, set_type, is_warmup"
    )
    _FIELDS = _COLUMNS.split(", ")

    def _to_set(self, row: Tuple) -> LoggedSet:
        return LoggedSet.from_row(dict(zip(self._FIELDS, row)))

    def add(self, entry: LoggedSet) -> int:
        if entry.session_id is None or entry.exercise_id is None:
            raise ValueError("session_id and exercise_id required")
        if entry.is_empty:
            raise ValueError("empty sets are not stored")
        return self.execute(
            "INSERT INTO set_logs (session_id, exercise_id, reps, weight_kg, set_number, notes, set_type, is_warmup) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
            (
                entry.session_id,
                entry.exercise_id,
                entry.reps,
                entry.weight_kg,
                entry.set_number,
                entry.notes,
                entry.set_type.value,
                int(entry.warmup),
            ),
        )

    def bulk_add(self, session_id: int, entries: Iterable[LoggedSet]) -> list[int]:
        """Insert ``entries`` for ``session_id`` in a single transaction."""
        ids: list[int] = []
        with self._connection() as conn:
            for entry in entries:
                if entry.is_empty:
                    continue
                if entry.exercise_id is None:
                    raise ValueError("exercise_id required")
                cur = conn.execute(
                    "INSERT INTO set_logs (session_id, exercise_id, reps, weight_kg, set_number, notes, set_type, is_warmup) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                    (
                        session_id,
                        entry.exercise_id,
                        entry.reps,
                        entry.weight_kg,
                        entry.set_number,
                        entry.notes,
                        entry.set_type.value,
                        int(entry.warmup),
                    ),
                )
                ids.append(cur.lastrowid)
        return ids

    def update(
        self,
        set_id: int,
        reps: Optional[int] = None,
        weight_kg: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> None:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM set_logs WHERE id = ?;", (set_id,)
        )
        if not rows:
            raise ValueError("set not found")
        current = self._to_set(rows[0])
        updated = LoggedSet.from_row(
            {
                **current.model_dump(),
                "reps": current.reps if reps is None else reps,
                "weight_kg": current.weight_kg if weight_kg is None else weight_kg,
                "notes": current.notes if notes is None else notes,
            }
        )
        if updated.is_empty:
            raise ValueError("empty sets are not stored")
        self.execute(
            "UPDATE set_logs SET reps = ?, weight_kg = ?, notes = ? WHERE id = ?;",
            (updated.reps, updated.weight_kg, updated.notes, set_id),
        )

    def remove(self, set_id: int) -> None:
        """Delete a set and renumber the remaining sets of that exercise."""
        rows = self.fetch_all(
            "SELECT session_id, exercise_id FROM set_logs WHERE id = ?;", (set_id,)
        )
        if not rows:
            raise ValueError("set not found")
        session_id, exercise_id = rows[0]
        with self._connection() as conn:
            conn.execute("DELETE FROM set_logs WHERE id = ?;", (set_id,))
            remaining = conn.execute(
                "SELECT id FROM set_logs WHERE session_id = ? AND exercise_id = ? "
                "ORDER BY set_number, id;",
                (session_id, exercise_id),
            ).fetchall()
            for pos, (sid,) in enumerate(remaining, start=1):
                conn.execute(
                    "UPDATE set_logs SET set_number = ? WHERE id = ?;", (pos, sid)
                )

    def fetch_for_session(self, session_id: int) -> list[LoggedSet]:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM set_logs WHERE session_id = ? "
            "ORDER BY exercise_id, set_number, id;",
            (session_id,),
        )
        return [self._to_set(r) for r in rows]

    def fetch_for_exercise(self, exercise_id: int) -> list[LoggedSet]:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM set_logs WHERE exercise_id = ? ORDER BY id;",
            (exercise_id,),
        )
        return [self._to_set(r) for r in rows]

    def max_weight(self, exercise_id: int) -> float:
        rows = self.fetch_all(
            "SELECT MAX(weight_kg) FROM set_logs WHERE exercise_id = ?;",
            (exercise_id,),
        )
        return float(rows[0][0]) if rows and rows[0][0] is not None else 0.0

    def max_weights(self, exercise_ids: list[int]) -> dict[int, float]:
        """Return the all-time heaviest weight for each of ``exercise_ids``."""
        if not exercise_ids:
            return {}
        rows = self.fetch_all(
            "SELECT exercise_id, MAX(weight_kg) FROM set_logs "
            f"WHERE exercise_id IN ({self._placeholders(exercise_ids)}) GROUP BY exercise_id;",
            tuple(exercise_ids),
        )
        return {int(r[0]): float(r[1]) for r in rows}

    def fetch_history(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        exercise_id: Optional[int] = None,
        user_ids: Optional[list[str]] = None,
        session_ids: Optional[list[int]] = None,
    ) -> list[dict]:
        """Return logged sets joined with session, routine and exercise info."""
        query = (
            "SELECT sl.session_id, s.created_at, r.name, s.user_id, sl.exercise_id, e.name, c.name, "
            "sl.reps, sl.weight_kg, sl.set_number, sl.set_type, sl.is_warmup, s.duration_seconds "
            "FROM set_logs sl "
            "JOIN sessions s ON s.id = sl.session_id "
            "JOIN exercises e ON e.id = sl.exercise_id "
            "LEFT JOIN categories c ON c.id = e.category_id "
            "LEFT JOIN routines r ON r.id = s.routine_id"
        )
        where: list[str] = []
        params: list = []
        if start:
            where.append("s.created_at >= ?")
            params.append(start)
        if end:
            where.append("s.created_at <= ?")
            params.append(end)
        if exercise_id is not None:
            where.append("sl.exercise_id = ?")
            params.append(exercise_id)
        if user_ids is not None:
            if not user_ids:
                return []
            where.append(f"s.user_id IN ({self._placeholders(user_ids)})")
            params.extend(user_ids)
        if session_ids is not None:
            if not session_ids:
                return []
            where.append(f"sl.session_id IN ({self._placeholders(session_ids)})")
            params.extend(session_ids)
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY s.created_at, sl.session_id, sl.exercise_id, sl.set_number;"
        logger.debug("history query with %d params", len(params))
        history = []
        for row in self.fetch_all(query, tuple(params)):
            (
                session_id,
                created_at,
                routine_name,
                user_id,
                ex_id,
                ex_name,
                category,
                reps,
                weight,
                set_number,
                set_type,
                is_warmup,
                duration,
            ) = row
            history.append(
                {
                    "session_id": int(session_id),
                    "created_at": created_at,
                    "routine": routine_name,
                    "user_id": user_id,
                    "exercise_id": int(ex_id),
                    "exercise": ex_name,
                    "category": category,
                    "reps": int(reps),
                    "weight_kg": float(weight),
                    "set_number": int(set_number),
                    "set_type": set_type,
                    "is_warmup": bool(is_warmup),
                    "duration_seconds": duration,
                }
            )
        return history


class GoalRepository(BaseRepository):
    """Repository for strength goals."""

    def add(self, exercise_id: int, target_weight: float) -> int:
        if target_weight <= 0:
            raise ValueError("target_weight must be positive")
        if not self._exists("exercises", exercise_id):
            raise ValueError("exercise not found")
        return self.execute(
            "INSERT INTO goals (exercise_id, target_weight, created_at) VALUES (?, ?, ?);",
            (exercise_id, target_weight, utc_now()),
        )

    def fetch_all_goals(self) -> list[dict]:
        rows = self.fetch_all(
            "SELECT g.id, g.exercise_id, e.name, g.target_weight, g.achieved, g.achieved_at, g.created_at "
            "FROM goals g JOIN exercises e ON e.id = g.exercise_id "
            "ORDER BY g.created_at DESC, g.id DESC;"
        )
        return [
            {
                "id": int(r[0]),
                "exercise_id": int(r[1]),
                "exercise": r[2],
                "target_weight": float(r[3]),
                "achieved": bool(r[4]),
                "achieved_at": r[5],
                "created_at": r[6],
            }
            for r in rows
        ]

    def mark_achieved(self, goal_id: int, timestamp: Optional[str] = None) -> str:
        if not self._exists("goals", goal_id):
            raise ValueError("goal not found")
        ts = timestamp or utc_now()
        self.execute(
            "UPDATE goals SET achieved = 1, achieved_at = ? WHERE id = ?;",
            (ts, goal_id),
        )
        return ts

    def delete(self, goal_id: int) -> None:
        if not self._exists("goals", goal_id):
            raise ValueError("goal not found")
        self.execute("DELETE FROM goals WHERE id = ?;", (goal_id,))


class ProfileRepository(BaseRepository):
    """Repository for user profiles."""

    _COLUMNS = ("id", "username", "display_name", "bio", "is_public", "updated_at")

    def _as_dict(self, row: Tuple) -> dict:
        data = dict(zip(self._COLUMNS, row))
        data["is_public"] = bool(data["is_public"])
        return data

    def upsert(
        self,
        profile_id: str,
        username: Optional[str],
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
        is_public: bool = False,
    ) -> None:
        try:
            self.execute(
                "INSERT INTO profiles (id, username, display_name, bio, is_public, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET username=excluded.username, display_name=excluded.display_name, "
                "bio=excluded.bio, is_public=excluded.is_public, updated_at=excluded.updated_at;",
                (profile_id, username, display_name, bio, int(is_public), utc_now()),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError("username already taken") from e

    def fetch(self, profile_id: str) -> Optional[dict]:
        rows = self.fetch_all(
            f"SELECT {', '.join(self._COLUMNS)} FROM profiles WHERE id = ?;",
            (profile_id,),
        )
        return self._as_dict(rows[0]) if rows else None

    def fetch_by_username(self, username: str) -> Optional[dict]:
        rows = self.fetch_all(
            f"SELECT {', '.join(self._COLUMNS)} FROM profiles WHERE username = ?;",
            (username,),
        )
        return self._as_dict(rows[0]) if rows else None

    def fetch_many(self, profile_ids: list[str]) -> dict[str, dict]:
        if not profile_ids:
            return {}
        rows = self.fetch_all(
            f"SELECT {', '.join(self._COLUMNS)} FROM profiles "
            f"WHERE id IN ({self._placeholders(profile_ids)});",
            tuple(profile_ids),
        )
        return {r[0]: self._as_dict(r) for r in rows}

    def search(self, query: str, limit: int = 10) -> list[dict]:
        rows = self.fetch_all(
            f"SELECT {', '.join(self._COLUMNS)} FROM profiles "
            "WHERE username LIKE ? ORDER BY username LIMIT ?;",
            (f"%{query}%", limit),
        )
        return [self._as_dict(r) for r in rows]


class FriendshipRepository(BaseRepository):
    """Repository for the friendship graph."""

    def add(self, user_id: str, friend_id: str) -> int:
        return self.execute(
            "INSERT INTO friendships (user_id, friend_id, status, created_at) VALUES (?, ?, 'pending', ?);",
            (user_id, friend_id, utc_now()),
        )

    def find(self, user_a: str, user_b: str) -> Optional[tuple[int, str, str, str]]:
        rows = self.fetch_all(
            "SELECT id, user_id, friend_id, status FROM friendships "
            "WHERE (user_id = ? AND friend_id = ?) OR (user_id = ? AND friend_id = ?);",
            (user_a, user_b, user_b, user_a),
        )
        return tuple(rows[0]) if rows else None

    def fetch_detail(self, friendship_id: int) -> tuple[int, str, str, str]:
        rows = self.fetch_all(
            "SELECT id, user_id, friend_id, status FROM friendships WHERE id = ?;",
            (friendship_id,),
        )
        if not rows:
            raise ValueError("friendship not found")
        return tuple(rows[0])

    def fetch_for_user(
        self, user_id: str, status: Optional[str] = None
    ) -> list[tuple[int, str, str, str]]:
        query = (
            "SELECT id, user_id, friend_id, status FROM friendships "
            "WHERE (user_id = ? OR friend_id = ?)"
        )
        params: list = [user_id, user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC;"
        return [tuple(r) for r in self.fetch_all(query, tuple(params))]

    def set_status(self, friendship_id: int, status: str) -> None:
        if not self._exists("friendships", friendship_id):
            raise ValueError("friendship not found")
        self.execute(
            "UPDATE friendships SET status = ? WHERE id = ?;", (status, friendship_id)
        )

    def delete(self, friendship_id: int) -> None:
        if not self._exists("friendships", friendship_id):
            raise ValueError("friendship not found")
        self.execute("DELETE FROM friendships WHERE id = ?;", (friendship_id,))


class BodyMeasurementRepository(BaseRepository):
    """Repository for body measurement logs."""

    FIELDS = (
        "weight_kg",
        "chest_cm",
        "waist_cm",
        "hips_cm",
        "bicep_left_cm",
        "bicep_right_cm",
        "thigh_left_cm",
        "thigh_right_cm",
        "body_fat_percent",
    )

    def log(self, date: str, **values: Optional[float]) -> int:
        unknown = set(values) - set(self.FIELDS)
        if unknown:
            raise ValueError(f"unknown fields: {', '.join(sorted(unknown))}")
        given = {k: v for k, v in values.items() if v is not None}
        if not given:
            raise ValueError("at least one measurement required")
        if any(float(v) < 0 for v in given.values()):
            raise ValueError("measurements must be non-negative")
        cols = ["date", *given]
        return self.execute(
            f"INSERT INTO body_measurements ({', '.join(cols)}) VALUES ({self._placeholders(cols)});",
            (date, *(float(v) for v in given.values())),
        )

    def fetch_history(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> list[dict]:
        query = f"SELECT id, date, {', '.join(self.FIELDS)} FROM body_measurements WHERE 1=1"
        params: list[str] = []
        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)
        query += " ORDER BY date, id;"
        keys = ("id", "date", *self.FIELDS)
        return [dict(zip(keys, r)) for r in self.fetch_all(query, tuple(params))]

    def delete(self, entry_id: int) -> None:
        if not self._exists("body_measurements", entry_id):
            raise ValueError("measurement not found")
        self.execute("DELETE FROM body_measurements WHERE id = ?;", (entry_id,))


class SharedRoutineRepository(BaseRepository):
    """Repository for routines published to other users."""

    def add(
        self,
        routine_id: int,
        user_id: Optional[str],
        title: str,
        description: Optional[str] = None,
        is_public: bool = True,
    ) -> int:
        if not self._exists("routines", routine_id):
            raise ValueError("routine not found")
        if not (title or "").strip():
            raise ValueError("title required")
        return self.execute(
            "INSERT INTO shared_routines (routine_id, user_id, title, description, is_public, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (routine_id, user_id, title.strip(), description, int(is_public), utc_now()),
        )

    def _as_dict(self, row: Tuple) -> dict:
        return {
            "id": int(row[0]),
            "routine_id": int(row[1]),
            "user_id": row[2],
            "title": row[3],
            "description": row[4],
            "is_public": bool(row[5]),
            "import_count": int(row[6]),
            "created_at": row[7],
            "username": row[8],
        }

    _SELECT = (
        "SELECT sr.id, sr.routine_id, sr.user_id, sr.title, sr.description, sr.is_public, "
        "sr.import_count, sr.created_at, p.username FROM shared_routines sr "
        "LEFT JOIN profiles p ON p.id = sr.user_id"
    )

    def fetch_public(self) -> list[dict]:
        rows = self.fetch_all(
            self._SELECT + " WHERE sr.is_public = 1 ORDER BY sr.created_at DESC, sr.id DESC;"
        )
        return [self._as_dict(r) for r in rows]

    def fetch_detail(self, shared_id: int) -> dict:
        rows = self.fetch_all(self._SELECT + " WHERE sr.id = ?;", (shared_id,))
        if not rows:
            raise ValueError("shared routine not found")
        return self._as_dict(rows[0])

    def increment_imports(self, shared_id: int) -> None:
        self.execute(
            "UPDATE shared_routines SET import_count = import_count + 1 WHERE id = ?;",
            (shared_id,),
        )


class SettingsRepository(BaseRepository):
    """Repository for application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = DEFAULT_DB_PATH, yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, float | str] = {}
        for k, v in rows:
            try:
                result[k] = float(v)
            except ValueError:
                result[k] = v
        return result

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self.all_settings())

    def get_text(self, key: str, default: str) -> str:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_float(self, key: str, default: float) -> float:
        try:
            return float(self.get_text(key, str(default)))
        except ValueError:
            return default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def set_text(self, key: str, value: str) -> None:
        candidate = {**self.all_settings(), key: value}
        validate_settings(candidate)
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))
