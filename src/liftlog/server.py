"""
LiftLog Server - FastAPI backend with SQLite
Exercise library, workout composition, session logging and progress dashboard
"""
import logging
import os
import sqlite3
from contextlib import contextmanager, asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from .progress import (
    array_move,
    build_dashboard,
    day_end,
    day_start,
    format_timestamp,
    get_utc_now,
    previous_period,
    resolve_date_range,
    suggest_weight,
)


load_dotenv()

log = logging.getLogger("liftlog")

# Configuration
PROJECT_ROOT = Path(__file__).parent.parent.parent


def is_test_mode() -> bool:
    """Check if running in test mode via environment variable."""
    return os.environ.get("LIFTLOG_TEST_MODE", "").lower() == "true"


def is_pytest_running() -> bool:
    """Check if running under pytest (tests control their own data)."""
    import sys
    return "pytest" in sys.modules


def get_database_path() -> Path:
    """Get the database path based on mode."""
    explicit = os.environ.get("LIFTLOG_DB_PATH")
    if explicit:
        return Path(explicit)
    if is_test_mode():
        return PROJECT_ROOT / "liftlog_test.db"
    return PROJECT_ROOT / "liftlog.db"


# Module-level DATABASE_PATH; test fixtures patch it directly
DATABASE_PATH = get_database_path()


@asynccontextmanager
async def lifespan(app):
    global DATABASE_PATH
    if is_test_mode() and not is_pytest_running():
        # Only seed when running the server manually with --test;
        # pytest controls its own data via fixtures
        DATABASE_PATH = get_database_path()
        init_database()
        seed_test_data()
    elif not is_pytest_running():
        init_database()
    log.info("Using database %s", DATABASE_PATH)
    yield


app = FastAPI(title="LiftLog Server", lifespan=lifespan)

# CORS middleware - allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Database helpers
@contextmanager
def get_db(immediate=False):
    """Context manager for database connections.

    Uncommitted changes are rolled back when the block raises, so an
    endpoint that fails halfway leaves the database untouched.

    Args:
        immediate: Take the write lock up front (BEGIN IMMEDIATE). Needed
            by endpoints that read positions and then write based on them.
    """
    conn = sqlite3.connect(DATABASE_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    if immediate:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_database(db_path=None):
    """Initialize the database with required tables.

    Args:
        db_path: Optional path override. If None, uses DATABASE_PATH.
    """
    path = str(db_path) if db_path else str(DATABASE_PATH)
    conn = sqlite3.connect(path)
    cursor = conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")

    # exercises - the user's exercise library
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS exercises (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            name            TEXT NOT NULL,
            description     TEXT,
            default_sets    INTEGER NOT NULL DEFAULT 3,
            default_reps    INTEGER NOT NULL DEFAULT 10,
            default_weight  REAL NOT NULL DEFAULT 20,
            icon_url        TEXT,
            created_at      TEXT NOT NULL,
            last_modified   TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_exercises_name ON exercises(name)")

    # workouts - named, reusable compositions of exercises
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS workouts (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            name           TEXT NOT NULL,
            date           TEXT NOT NULL,
            created_at     TEXT NOT NULL,
            last_modified  TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_workouts_date ON workouts(date)")

    # workout_exercises - ordered exercise slots with the current targets
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS workout_exercises (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            workout_id       INTEGER NOT NULL REFERENCES workouts(id) ON DELETE CASCADE,
            exercise_id      INTEGER NOT NULL REFERENCES exercises(id) ON DELETE CASCADE,
            position         INTEGER NOT NULL,
            sets             INTEGER NOT NULL,
            reps             INTEGER NOT NULL,
            weight           REAL NOT NULL,
            previous_weight  REAL,
            last_used_at     TEXT,
            UNIQUE(workout_id, position),
            UNIQUE(workout_id, exercise_id)
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_workout_exercises_workout ON workout_exercises(workout_id)")

    # archived_workouts - one row per completed session
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS archived_workouts (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            workout_id  INTEGER REFERENCES workouts(id) ON DELETE SET NULL,
            name        TEXT NOT NULL,
            date        TEXT NOT NULL,
            score       INTEGER CHECK (score IS NULL OR score BETWEEN 1 AND 5),
            notes       TEXT,
            created_at  TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_archived_workouts_date ON archived_workouts(date)")

    # archived_workout_exercises - what was actually lifted in a session
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS archived_workout_exercises (
            id                   INTEGER PRIMARY KEY AUTOINCREMENT,
            archived_workout_id  INTEGER NOT NULL REFERENCES archived_workouts(id) ON DELETE CASCADE,
            exercise_id          INTEGER REFERENCES exercises(id) ON DELETE SET NULL,
            exercise_name        TEXT NOT NULL,
            position             INTEGER NOT NULL,
            sets                 INTEGER NOT NULL,
            reps                 INTEGER NOT NULL,
            weight               REAL NOT NULL
        )
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_archived_exercises_workout
        ON archived_workout_exercises(archived_workout_id)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_archived_exercises_exercise
        ON archived_workout_exercises(exercise_id)
    """)

    conn.commit()
    conn.close()


# ==================== Row Assembly Helpers ====================


def _get_exercise_row(cursor, exercise_id):
    cursor.execute("SELECT * FROM exercises WHERE id = ?", (exercise_id,))
    row = cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"Exercise not found: {exercise_id}")
    return row


def _get_workout_row(cursor, workout_id):
    cursor.execute("SELECT * FROM workouts WHERE id = ?", (workout_id,))
    row = cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"Workout not found: {workout_id}")
    return row


def fetch_slots(conn, workout_id):
    """Workout exercise slots in position order, joined with their exercise."""
    cursor = conn.cursor()
    cursor.execute("""
        SELECT we.*,
               e.name AS exercise_name,
               e.description AS exercise_description,
               e.default_sets, e.default_reps, e.default_weight,
               e.icon_url
        FROM workout_exercises we
        JOIN exercises e ON e.id = we.exercise_id
        WHERE we.workout_id = ?
        ORDER BY we.position
    """, (workout_id,))

    slots = []
    for r in cursor.fetchall():
        slots.append({
            "id": r["id"],
            "workout_id": r["workout_id"],
            "exercise_id": r["exercise_id"],
            "position": r["position"],
            "sets": r["sets"],
            "reps": r["reps"],
            "weight": r["weight"],
            "previous_weight": r["previous_weight"],
            "last_used_at": r["last_used_at"],
            "suggested_weight": suggest_weight(r["previous_weight"]),
            "exercise": {
                "id": r["exercise_id"],
                "name": r["exercise_name"],
                "description": r["exercise_description"],
                "default_sets": r["default_sets"],
                "default_reps": r["default_reps"],
                "default_weight": r["default_weight"],
                "icon_url": r["icon_url"],
            },
        })
    return slots


def _assemble_workout(conn, workout_row):
    workout = dict(workout_row)
    workout["exercises"] = fetch_slots(conn, workout_row["id"])
    return workout


def load_archived(conn, start_ts=None, end_ts=None, descending=False, limit=None):
    """Archived workouts in [start_ts, end_ts] with their exercise snapshots."""
    cursor = conn.cursor()
    clauses, params = [], []
    if start_ts:
        clauses.append("date >= ?")
        params.append(start_ts)
    if end_ts:
        clauses.append("date <= ?")
        params.append(end_ts)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    order = "DESC" if descending else "ASC"
    query = f"SELECT * FROM archived_workouts {where} ORDER BY date {order}, id {order}"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    cursor.execute(query, params)
    rows = cursor.fetchall()

    workouts = []
    for row in rows:
        entry = dict(row)
        cursor.execute("""
            SELECT id, exercise_id, exercise_name, position, sets, reps, weight
            FROM archived_workout_exercises
            WHERE archived_workout_id = ?
            ORDER BY position
        """, (row["id"],))
        entry["exercises"] = [dict(r) for r in cursor.fetchall()]
        workouts.append(entry)
    return workouts


def apply_order(cursor, workout_id, slot_ids):
    """Write a new slot order. slot_ids must be a permutation of the workout's slots."""
    cursor.execute(
        "SELECT id FROM workout_exercises WHERE workout_id = ? ORDER BY position",
        (workout_id,)
    )
    current = [r["id"] for r in cursor.fetchall()]
    if len(slot_ids) != len(set(slot_ids)) or sorted(slot_ids) != sorted(current):
        raise ValueError(
            f"Order must list each exercise of workout {workout_id} exactly once "
            f"(expected ids {sorted(current)}, got {list(slot_ids)})"
        )

    # Park every row on a negative position so UNIQUE(workout_id, position) holds
    cursor.execute(
        "UPDATE workout_exercises SET position = -position - 1 WHERE workout_id = ?",
        (workout_id,)
    )
    for position, slot_id in enumerate(slot_ids):
        cursor.execute(
            "UPDATE workout_exercises SET position = ? WHERE id = ?",
            (position, slot_id)
        )


def _touch_workout(cursor, workout_id, now=None):
    cursor.execute(
        "UPDATE workouts SET last_modified = ? WHERE id = ?",
        (now or get_utc_now(), workout_id)
    )


def _day_bounds(start: Optional[date], end: Optional[date]):
    return (day_start(start) if start else None, day_end(end) if end else None)


# Pydantic models
def _clean_name(v):
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name must not be blank")
    return v


class ExerciseCreate(BaseModel):
    name: str
    description: Optional[str] = None
    default_sets: int = Field(3, ge=1)
    default_reps: int = Field(10, ge=1)
    default_weight: float = Field(20, ge=0)
    icon_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _clean_name(v)


class ExerciseUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    default_sets: Optional[int] = Field(None, ge=1)
    default_reps: Optional[int] = Field(None, ge=1)
    default_weight: Optional[float] = Field(None, ge=0)
    icon_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _clean_name(v)


class WorkoutCreate(BaseModel):
    name: str
    exercise_ids: list[int] = Field(min_length=1)
    date: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _clean_name(v)


class WorkoutRename(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _clean_name(v)


class SlotCreate(BaseModel):
    exercise_id: int
    sets: Optional[int] = Field(None, ge=1)
    reps: Optional[int] = Field(None, ge=1)
    weight: Optional[float] = Field(None, ge=0)


class SlotUpdate(BaseModel):
    sets: Optional[int] = Field(None, ge=1)
    reps: Optional[int] = Field(None, ge=1)
    weight: Optional[float] = Field(None, ge=0)


class ReorderPayload(BaseModel):
    workout_exercise_ids: list[int]


class MovePayload(BaseModel):
    workout_exercise_id: int
    new_index: int = Field(ge=0)


class ArchivePayload(BaseModel):
    score: Optional[int] = Field(None, ge=1, le=5)
    date: Optional[datetime] = None
    notes: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    serverTime: str


# ==================== Health ====================


@app.get("/api/health", response_model=HealthResponse)
def health():
    """Liveness check."""
    return HealthResponse(status="ok", serverTime=get_utc_now())


# ==================== Exercises ====================


@app.get("/api/exercises")
def list_exercises():
    """List the exercise library ordered by name."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM exercises ORDER BY name COLLATE NOCASE, id")
        return [dict(r) for r in cursor.fetchall()]


@app.get("/api/exercises/{exercise_id}")
def get_exercise(exercise_id: int):
    with get_db() as conn:
        return dict(_get_exercise_row(conn.cursor(), exercise_id))


@app.post("/api/exercises", status_code=201)
def create_exercise(payload: ExerciseCreate):
    """Add an exercise to the library."""
    with get_db() as conn:
        cursor = conn.cursor()
        now = get_utc_now()
        cursor.execute("""
            INSERT INTO exercises
            (name, description, default_sets, default_reps, default_weight,
             icon_url, created_at, last_modified)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payload.name, payload.description,
            payload.default_sets, payload.default_reps, payload.default_weight,
            payload.icon_url, now, now,
        ))
        exercise_id = cursor.lastrowid
        conn.commit()
        log.info("Created exercise %s (%s)", exercise_id, payload.name)
        return dict(_get_exercise_row(cursor, exercise_id))


@app.patch("/api/exercises/{exercise_id}")
def update_exercise(exercise_id: int, payload: ExerciseUpdate):
    """Update some fields of an exercise."""
    nullable = {"description", "icon_url"}
    updates = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in nullable
    }

    with get_db() as conn:
        cursor = conn.cursor()
        _get_exercise_row(cursor, exercise_id)
        if updates:
            set_clauses = [f"{col} = ?" for col in updates]
            params = list(updates.values())
            set_clauses.append("last_modified = ?")
            params.append(get_utc_now())
            params.append(exercise_id)
            cursor.execute(
                f"UPDATE exercises SET {', '.join(set_clauses)} WHERE id = ?",
                params
            )
            conn.commit()
        return dict(_get_exercise_row(cursor, exercise_id))


@app.delete("/api/exercises/{exercise_id}")
def delete_exercise(exercise_id: int):
    """
    Delete an exercise.
    Workout slots using it go with it; archived sessions keep its name.
    """
    with get_db(immediate=True) as conn:
        cursor = conn.cursor()
        _get_exercise_row(cursor, exercise_id)

        cursor.execute(
            "SELECT DISTINCT workout_id FROM workout_exercises WHERE exercise_id = ?",
            (exercise_id,)
        )
        affected = [r["workout_id"] for r in cursor.fetchall()]

        cursor.execute("DELETE FROM exercises WHERE id = ?", (exercise_id,))

        # Close the gaps left in affected workouts
        now = get_utc_now()
        for workout_id in affected:
            cursor.execute(
                "SELECT id FROM workout_exercises WHERE workout_id = ? ORDER BY position",
                (workout_id,)
            )
            apply_order(cursor, workout_id, [r["id"] for r in cursor.fetchall()])
            _touch_workout(cursor, workout_id, now)

        conn.commit()
        log.info("Deleted exercise %s (removed from %d workouts)", exercise_id, len(affected))
        return {"success": True, "id": exercise_id}


# ==================== Workouts ====================


@app.get("/api/workouts")
def list_workouts():
    """List workouts, newest first."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT w.*, COUNT(we.id) AS exercise_count
            FROM workouts w
            LEFT JOIN workout_exercises we ON we.workout_id = w.id
            GROUP BY w.id
            ORDER BY w.date DESC, w.id DESC
        """)
        return [dict(r) for r in cursor.fetchall()]


@app.get("/api/workouts/{workout_id}")
def get_workout(workout_id: int):
    with get_db() as conn:
        return _assemble_workout(conn, _get_workout_row(conn.cursor(), workout_id))


@app.post("/api/workouts", status_code=201)
def create_workout(payload: WorkoutCreate):
    """
    Create a workout from an ordered list of exercises.
    Each slot starts from the exercise's default sets, reps and weight.
    """
    if len(payload.exercise_ids) != len(set(payload.exercise_ids)):
        raise HTTPException(status_code=400, detail="Each exercise can appear only once in a workout")

    with get_db() as conn:
        cursor = conn.cursor()
        exercises = [_get_exercise_row(cursor, ex_id) for ex_id in payload.exercise_ids]

        now = get_utc_now()
        workout_date = format_timestamp(payload.date) if payload.date else now
        cursor.execute("""
            INSERT INTO workouts (name, date, created_at, last_modified)
            VALUES (?, ?, ?, ?)
        """, (payload.name, workout_date, now, now))
        workout_id = cursor.lastrowid

        for position, ex in enumerate(exercises):
            cursor.execute("""
                INSERT INTO workout_exercises
                (workout_id, exercise_id, position, sets, reps, weight)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                workout_id, ex["id"], position,
                ex["default_sets"], ex["default_reps"], ex["default_weight"],
            ))

        conn.commit()
        log.info("Created workout %s (%s) with %d exercises", workout_id, payload.name, len(exercises))
        return _assemble_workout(conn, _get_workout_row(cursor, workout_id))


@app.patch("/api/workouts/{workout_id}")
def rename_workout(workout_id: int, payload: WorkoutRename):
    with get_db() as conn:
        cursor = conn.cursor()
        _get_workout_row(cursor, workout_id)
        cursor.execute(
            "UPDATE workouts SET name = ?, last_modified = ? WHERE id = ?",
            (payload.name, get_utc_now(), workout_id)
        )
        conn.commit()
        return _assemble_workout(conn, _get_workout_row(cursor, workout_id))


@app.delete("/api/workouts/{workout_id}")
def delete_workout(workout_id: int):
    """Delete a workout. CASCADE removes its slots; history is kept."""
    with get_db() as conn:
        cursor = conn.cursor()
        _get_workout_row(cursor, workout_id)
        cursor.execute("DELETE FROM workouts WHERE id = ?", (workout_id,))
        conn.commit()
        log.info("Deleted workout %s", workout_id)
        return {"success": True, "id": workout_id}


# ==================== Workout Exercises ====================


@app.get("/api/workouts/{workout_id}/exercises")
def list_workout_exercises(workout_id: int):
    with get_db() as conn:
        _get_workout_row(conn.cursor(), workout_id)
        return fetch_slots(conn, workout_id)


@app.post("/api/workouts/{workout_id}/exercises", status_code=201)
def add_exercise_to_workout(workout_id: int, payload: SlotCreate):
    """Append an exercise to the end of a workout."""
    with get_db(immediate=True) as conn:
        cursor = conn.cursor()
        _get_workout_row(cursor, workout_id)
        ex = _get_exercise_row(cursor, payload.exercise_id)

        cursor.execute("""
            SELECT id FROM workout_exercises WHERE workout_id = ? AND exercise_id = ?
        """, (workout_id, payload.exercise_id))
        if cursor.fetchone():
            raise HTTPException(
                status_code=409,
                detail=f"Exercise {payload.exercise_id} is already in workout {workout_id}"
            )

        cursor.execute(
            "SELECT COALESCE(MAX(position) + 1, 0) AS next_pos FROM workout_exercises WHERE workout_id = ?",
            (workout_id,)
        )
        position = cursor.fetchone()["next_pos"]

        try:
            cursor.execute("""
                INSERT INTO workout_exercises
                (workout_id, exercise_id, position, sets, reps, weight)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                workout_id, ex["id"], position,
                payload.sets if payload.sets is not None else ex["default_sets"],
                payload.reps if payload.reps is not None else ex["default_reps"],
                payload.weight if payload.weight is not None else ex["default_weight"],
            ))
        except sqlite3.IntegrityError as e:
            log.warning("Conflicting add to workout %s: %s", workout_id, e)
            raise HTTPException(status_code=409, detail=f"Workout {workout_id} changed concurrently: {e}")
        slot_id = cursor.lastrowid
        _touch_workout(cursor, workout_id)
        conn.commit()

        return next(s for s in fetch_slots(conn, workout_id) if s["id"] == slot_id)


@app.patch("/api/workout-exercises/{slot_id}")
def update_workout_exercise(slot_id: int, payload: SlotUpdate):
    """
    Save logged sets, reps and weight for a workout exercise.
    The saved weight becomes previous_weight, the base for the next suggestion.
    """
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM workout_exercises WHERE id = ?", (slot_id,))
        slot = cursor.fetchone()
        if not slot:
            raise HTTPException(status_code=404, detail=f"Workout exercise not found: {slot_id}")

        sets = payload.sets if payload.sets is not None else slot["sets"]
        reps = payload.reps if payload.reps is not None else slot["reps"]
        weight = payload.weight if payload.weight is not None else slot["weight"]
        now = get_utc_now()

        cursor.execute("""
            UPDATE workout_exercises
            SET sets = ?, reps = ?, weight = ?, previous_weight = ?, last_used_at = ?
            WHERE id = ?
        """, (sets, reps, weight, weight, now, slot_id))
        _touch_workout(cursor, slot["workout_id"], now)
        conn.commit()

        return next(s for s in fetch_slots(conn, slot["workout_id"]) if s["id"] == slot_id)


@app.delete("/api/workout-exercises/{slot_id}")
def remove_exercise_from_workout(slot_id: int):
    """Remove an exercise from a workout and close the gap in positions."""
    with get_db(immediate=True) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT workout_id FROM workout_exercises WHERE id = ?", (slot_id,))
        slot = cursor.fetchone()
        if not slot:
            raise HTTPException(status_code=404, detail=f"Workout exercise not found: {slot_id}")
        workout_id = slot["workout_id"]

        cursor.execute("DELETE FROM workout_exercises WHERE id = ?", (slot_id,))
        cursor.execute(
            "SELECT id FROM workout_exercises WHERE workout_id = ? ORDER BY position",
            (workout_id,)
        )
        apply_order(cursor, workout_id, [r["id"] for r in cursor.fetchall()])
        _touch_workout(cursor, workout_id)
        conn.commit()

        return {"success": True, "id": slot_id, "workout_id": workout_id}


@app.put("/api/workouts/{workout_id}/exercises/order")
def reorder_workout_exercises(workout_id: int, payload: ReorderPayload):
    """
    Replace the exercise order of a workout.
    All-or-nothing: a bad list is rejected and the stored order is kept.
    """
    with get_db(immediate=True) as conn:
        cursor = conn.cursor()
        _get_workout_row(cursor, workout_id)
        try:
            apply_order(cursor, workout_id, payload.workout_exercise_ids)
        except ValueError as e:
            log.warning("Rejected reorder of workout %s: %s", workout_id, e)
            raise HTTPException(status_code=400, detail=str(e))
        _touch_workout(cursor, workout_id)
        conn.commit()
        return fetch_slots(conn, workout_id)


@app.post("/api/workouts/{workout_id}/exercises/move")
def move_workout_exercise(workout_id: int, payload: MovePayload):
    """Move one exercise to a new index (drag-and-drop style)."""
    with get_db(immediate=True) as conn:
        cursor = conn.cursor()
        _get_workout_row(cursor, workout_id)
        cursor.execute(
            "SELECT id FROM workout_exercises WHERE workout_id = ? ORDER BY position",
            (workout_id,)
        )
        current = [r["id"] for r in cursor.fetchall()]
        if payload.workout_exercise_id not in current:
            raise HTTPException(
                status_code=404,
                detail=f"Workout exercise {payload.workout_exercise_id} is not in workout {workout_id}"
            )

        new_order = array_move(current, current.index(payload.workout_exercise_id), payload.new_index)
        apply_order(cursor, workout_id, new_order)
        _touch_workout(cursor, workout_id)
        conn.commit()
        return fetch_slots(conn, workout_id)


# ==================== Session Logging & History ====================


@app.post("/api/workouts/{workout_id}/archive", status_code=201)
def archive_workout(workout_id: int, payload: Optional[ArchivePayload] = None):
    """
    Log a completed session: snapshot the workout's current exercises
    (sets, reps, weight) into the history with an optional 1-5 score.
    """
    payload = payload or ArchivePayload()

    with get_db() as conn:
        cursor = conn.cursor()
        workout = _get_workout_row(cursor, workout_id)
        slots = fetch_slots(conn, workout_id)
        if not slots:
            raise HTTPException(status_code=400, detail="Cannot log a workout without exercises")

        now = get_utc_now()
        session_date = format_timestamp(payload.date) if payload.date else now
        cursor.execute("""
            INSERT INTO archived_workouts (workout_id, name, date, score, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (workout_id, workout["name"], session_date, payload.score, payload.notes, now))
        archived_id = cursor.lastrowid

        for slot in slots:
            cursor.execute("""
                INSERT INTO archived_workout_exercises
                (archived_workout_id, exercise_id, exercise_name, position, sets, reps, weight)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                archived_id, slot["exercise_id"], slot["exercise"]["name"],
                slot["position"], slot["sets"], slot["reps"], slot["weight"],
            ))

        conn.commit()
        log.info("Archived workout %s as history entry %s", workout_id, archived_id)
        return _get_history_entry(conn, archived_id)


def _get_history_entry(conn, archived_id):
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM archived_workouts WHERE id = ?", (archived_id,))
    row = cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"History entry not found: {archived_id}")
    entry = dict(row)
    cursor.execute("""
        SELECT id, exercise_id, exercise_name, position, sets, reps, weight
        FROM archived_workout_exercises
        WHERE archived_workout_id = ?
        ORDER BY position
    """, (archived_id,))
    entry["exercises"] = [dict(r) for r in cursor.fetchall()]
    return entry


@app.get("/api/history")
def list_history(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None)
):
    """Completed sessions, newest first, optionally limited to a date range."""
    if start and end and start > end:
        raise HTTPException(status_code=400, detail=f"Start date {start} is after end date {end}")
    start_ts, end_ts = _day_bounds(start, end)
    with get_db() as conn:
        return load_archived(conn, start_ts, end_ts, descending=True)


@app.get("/api/history/recent")
def recent_activity(limit: int = Query(5, ge=1, le=100)):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id, name, date, score FROM archived_workouts
            ORDER BY date DESC, id DESC
            LIMIT ?
        """, (limit,))
        return [dict(r) for r in cursor.fetchall()]


@app.get("/api/history/{archived_id}")
def get_history_entry(archived_id: int):
    with get_db() as conn:
        return _get_history_entry(conn, archived_id)


@app.delete("/api/history/{archived_id}")
def delete_history_entry(archived_id: int):
    with get_db() as conn:
        cursor = conn.cursor()
        _get_history_entry(conn, archived_id)
        cursor.execute("DELETE FROM archived_workouts WHERE id = ?", (archived_id,))
        conn.commit()
        log.info("Deleted history entry %s", archived_id)
        return {"success": True, "id": archived_id}


# ==================== Dashboard ====================


def dashboard_stats(conn, start_day: Optional[date], end_day: date) -> dict[str, Any]:
    """
    Dashboard statistics for archived workouts between two days (inclusive).

    When the range holds no sessions, the range is widened back to the
    latest session on or before end_day so the dashboard is never blank
    while history exists.
    """
    end_ts = day_end(end_day)
    workouts = load_archived(conn, day_start(start_day) if start_day else None, end_ts)

    range_start = start_day
    if not workouts and start_day is not None:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT date FROM archived_workouts WHERE date <= ?
            ORDER BY date DESC LIMIT 1
        """, (end_ts,))
        nearest = cursor.fetchone()
        if nearest:
            range_start = date.fromisoformat(nearest["date"][:10])
            log.info("No sessions from %s to %s, falling back to %s", start_day, end_day, range_start)
            workouts = load_archived(conn, day_start(range_start), end_ts)

    previous = None
    if range_start is not None:
        prev_start, prev_end = previous_period(range_start, end_day)
        previous = load_archived(conn, day_start(prev_start), day_end(prev_end))

    cursor = conn.cursor()
    cursor.execute("SELECT * FROM exercises ORDER BY name COLLATE NOCASE, id")
    exercises = [dict(r) for r in cursor.fetchall()]

    stats = build_dashboard(workouts, exercises, previous)
    stats["start"] = range_start.isoformat() if range_start else None
    stats["end"] = end_day.isoformat()
    return stats


@app.get("/api/dashboard")
def get_dashboard(
    timeframe: Optional[str] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None)
):
    """
    Totals, chart series and recent activity for a time frame.
    timeframe is one of week, month, quarter, year, all, custom (needs start).
    """
    try:
        start_day, end_day = resolve_date_range(timeframe, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    with get_db() as conn:
        return dashboard_stats(conn, start_day, end_day)


def seed_test_data():
    """Seed the test database with a small exercise library and some history."""
    now = get_utc_now()
    today = datetime.now(timezone.utc).replace(hour=18, minute=0, second=0, microsecond=0)

    with get_db() as conn:
        cursor = conn.cursor()

        # Start from a clean slate on every seeded start
        cursor.execute("DELETE FROM archived_workouts")
        cursor.execute("DELETE FROM workouts")
        cursor.execute("DELETE FROM exercises")

        exercise_ids = {}
        for name, description, sets, reps, weight in [
            ("Bench Press", "Flat barbell bench press", 3, 8, 60),
            ("Back Squat", "High-bar back squat", 3, 5, 80),
            ("Deadlift", "Conventional deadlift", 3, 5, 100),
            ("Overhead Press", "Standing barbell press", 3, 8, 40),
            ("Barbell Row", "Bent-over row, overhand grip", 3, 10, 50),
            ("Pull-ups", "Bodyweight, full hang", 3, 8, 0),
        ]:
            cursor.execute("""
                INSERT INTO exercises
                (name, description, default_sets, default_reps, default_weight,
                 created_at, last_modified)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (name, description, sets, reps, weight, now, now))
            exercise_ids[name] = cursor.lastrowid

        workouts = {}
        for name, members in [
            ("Push Day", ["Bench Press", "Overhead Press"]),
            ("Pull Day", ["Deadlift", "Barbell Row", "Pull-ups"]),
            ("Leg Day", ["Back Squat"]),
        ]:
            cursor.execute("""
                INSERT INTO workouts (name, date, created_at, last_modified)
                VALUES (?, ?, ?, ?)
            """, (name, now, now, now))
            workout_id = cursor.lastrowid
            workouts[name] = (workout_id, members)
            for position, ex_name in enumerate(members):
                cursor.execute("""
                    INSERT INTO workout_exercises
                    (workout_id, exercise_id, position, sets, reps, weight)
                    SELECT ?, id, ?, default_sets, default_reps, default_weight
                    FROM exercises WHERE id = ?
                """, (workout_id, position, exercise_ids[ex_name]))

        # Three weeks of history with a slow weight progression
        sessions = 0
        for week in range(3, 0, -1):
            for offset, (name, score) in enumerate([("Push Day", 4), ("Pull Day", 3), ("Leg Day", 5)]):
                session_day = today - timedelta(weeks=week, days=-offset * 2)
                workout_id, members = workouts[name]
                cursor.execute("""
                    INSERT INTO archived_workouts (workout_id, name, date, score, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (workout_id, name, format_timestamp(session_day), score, now))
                archived_id = cursor.lastrowid
                for position, ex_name in enumerate(members):
                    cursor.execute("""
                        INSERT INTO archived_workout_exercises
                        (archived_workout_id, exercise_id, exercise_name, position, sets, reps, weight)
                        SELECT ?, id, name, ?, default_sets, default_reps,
                               default_weight + ?
                        FROM exercises WHERE id = ?
                    """, (archived_id, position, (3 - week) * 2.5, exercise_ids[ex_name]))
                sessions += 1

        conn.commit()

    log.info("Seeded test data:")
    log.info("  - %d exercises", len(exercise_ids))
    log.info("  - %d workouts: %s", len(workouts), ", ".join(workouts))
    log.info("  - %d archived sessions over the last 3 weeks", sessions)


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="LiftLog Server")
    parser.add_argument("--test", action="store_true", help="Run in testing mode (port 8003, separate seeded database)")
    parser.add_argument("--host", help="Override the bind address")
    parser.add_argument("--port", type=int, help="Override the port number")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LIFTLOG_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Configure for test mode via environment variable
    if args.test:
        os.environ["LIFTLOG_TEST_MODE"] = "true"
        log.info("Starting in TEST MODE")
        log.info("  Database: %s", get_database_path())

    default_port = 8003 if args.test else int(os.environ.get("LIFTLOG_PORT", "8002"))
    port = args.port if args.port else default_port
    host = args.host or os.environ.get("LIFTLOG_HOST", "0.0.0.0")
    uvicorn.run(app, host=host, port=port)
