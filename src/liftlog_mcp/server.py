"""LiftLog MCP Server implementation.

Exposes the exercise library, workouts, session logging and progress
statistics through the Model Context Protocol, so an assistant can plan
workouts and review training history.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from fastmcp import FastMCP
except ImportError:
    raise ImportError(
        "FastMCP is required for MCP server functionality. "
        "Install with: pip install fastmcp"
    )

from liftlog.progress import array_move, day_end, day_start, get_utc_now, resolve_date_range
from liftlog.server import apply_order, dashboard_stats, fetch_slots, load_archived

from .config import MCPConfig


log = logging.getLogger("liftlog.mcp")


class SQLiteConnection:
    """SQLite connection context manager with configurable read/write mode."""

    def __init__(self, db_path: Path, read_only: bool = True):
        self.db_path = db_path
        self.read_only = read_only
        self.conn = None

    def __enter__(self):
        """Open SQLite connection."""
        if self.read_only:
            self.conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        else:
            self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close connection safely."""
        if self.conn:
            self.conn.close()


class DatabaseManager:
    """Manages database connections and operations."""

    def __init__(self, config: MCPConfig):
        self.config = config

    def get_connection(self, read_only: bool = True):
        """Get database connection."""
        return SQLiteConnection(self.config.db_path, read_only=read_only)

    def execute_query(
        self, query: str, params: Optional[List[Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute a read query and return at most max_rows results."""
        try:
            with self.get_connection(read_only=True) as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or [])
                return [dict(row) for row in cursor.fetchmany(self.config.max_rows)]
        except sqlite3.Error as e:
            raise ValueError(f"Database error: {str(e)}")

    @contextmanager
    def transaction(self):
        """Get a cursor for multi-statement transactions."""
        with self.get_connection(read_only=False) as conn:
            cursor = conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise


# ==================== Write Helpers ====================


def _create_exercise(cursor, name, description=None, default_sets=3,
                     default_reps=10, default_weight=20.0):
    """Insert an exercise. Returns its id."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Exercise name must not be blank")
    if default_sets < 1 or default_reps < 1:
        raise ValueError("Default sets and reps must be at least 1")
    if default_weight < 0:
        raise ValueError("Default weight cannot be negative")

    now = get_utc_now()
    cursor.execute("""
        INSERT INTO exercises
        (name, description, default_sets, default_reps, default_weight,
         created_at, last_modified)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, [name, description, default_sets, default_reps, default_weight, now, now])
    return cursor.lastrowid


def _create_workout(cursor, name, exercise_ids):
    """Insert a workout whose slots copy each exercise's defaults. Returns its id."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Workout name must not be blank")
    if not exercise_ids:
        raise ValueError("A workout needs at least one exercise")
    if len(exercise_ids) != len(set(exercise_ids)):
        raise ValueError("Each exercise can appear only once in a workout")

    exercises = []
    for ex_id in exercise_ids:
        cursor.execute("SELECT * FROM exercises WHERE id = ?", [ex_id])
        row = cursor.fetchone()
        if not row:
            raise ValueError(f"Exercise not found: {ex_id}")
        exercises.append(row)

    now = get_utc_now()
    cursor.execute("""
        INSERT INTO workouts (name, date, created_at, last_modified)
        VALUES (?, ?, ?, ?)
    """, [name, now, now, now])
    workout_id = cursor.lastrowid

    for position, ex in enumerate(exercises):
        cursor.execute("""
            INSERT INTO workout_exercises
            (workout_id, exercise_id, position, sets, reps, weight)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [workout_id, ex["id"], position,
              ex["default_sets"], ex["default_reps"], ex["default_weight"]])
    return workout_id


def _log_slot(cursor, slot_id, sets=None, reps=None, weight=None):
    """Save logged values on a workout exercise. Returns the workout id."""
    cursor.execute("SELECT * FROM workout_exercises WHERE id = ?", [slot_id])
    slot = cursor.fetchone()
    if not slot:
        raise ValueError(f"Workout exercise not found: {slot_id}")

    sets = sets if sets is not None else slot["sets"]
    reps = reps if reps is not None else slot["reps"]
    weight = weight if weight is not None else slot["weight"]
    if sets < 1 or reps < 1 or weight < 0:
        raise ValueError("Sets and reps must be at least 1 and weight cannot be negative")

    now = get_utc_now()
    cursor.execute("""
        UPDATE workout_exercises
        SET sets = ?, reps = ?, weight = ?, previous_weight = ?, last_used_at = ?
        WHERE id = ?
    """, [sets, reps, weight, weight, now, slot_id])
    cursor.execute(
        "UPDATE workouts SET last_modified = ? WHERE id = ?",
        [now, slot["workout_id"]]
    )
    return slot["workout_id"]


def _move_slot(cursor, workout_id, slot_id, new_index):
    """Move one workout exercise to new_index, shifting the others."""
    cursor.execute(
        "SELECT id FROM workout_exercises WHERE workout_id = ? ORDER BY position",
        [workout_id]
    )
    current = [r["id"] for r in cursor.fetchall()]
    if slot_id not in current:
        raise ValueError(f"Workout exercise {slot_id} is not in workout {workout_id}")

    new_order = array_move(current, current.index(slot_id), new_index)
    apply_order(cursor, workout_id, new_order)
    cursor.execute(
        "UPDATE workouts SET last_modified = ? WHERE id = ?",
        [get_utc_now(), workout_id]
    )
    return new_order


def _archive_workout(cursor, workout_id, score=None, notes=None):
    """Snapshot a workout's current exercises into the history. Returns the entry id."""
    if score is not None and not 1 <= score <= 5:
        raise ValueError(f"Score must be between 1 and 5, got {score}")

    cursor.execute("SELECT name FROM workouts WHERE id = ?", [workout_id])
    workout = cursor.fetchone()
    if not workout:
        raise ValueError(f"Workout not found: {workout_id}")

    cursor.execute("""
        SELECT we.*, e.name AS exercise_name
        FROM workout_exercises we
        JOIN exercises e ON e.id = we.exercise_id
        WHERE we.workout_id = ?
        ORDER BY we.position
    """, [workout_id])
    slots = cursor.fetchall()
    if not slots:
        raise ValueError("Cannot log a workout without exercises")

    now = get_utc_now()
    cursor.execute("""
        INSERT INTO archived_workouts (workout_id, name, date, score, notes, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, [workout_id, workout["name"], now, score, notes, now])
    archived_id = cursor.lastrowid

    for slot in slots:
        cursor.execute("""
            INSERT INTO archived_workout_exercises
            (archived_workout_id, exercise_id, exercise_name, position, sets, reps, weight)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [archived_id, slot["exercise_id"], slot["exercise_name"],
              slot["position"], slot["sets"], slot["reps"], slot["weight"]])
    return archived_id


def _read_workout(db_manager, workout_id):
    """Workout row plus its ordered exercises, or ValueError if missing."""
    with db_manager.get_connection(read_only=True) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM workouts WHERE id = ?", [workout_id])
        row = cursor.fetchone()
        if not row:
            raise ValueError(f"Workout not found: {workout_id}")
        workout = dict(row)
        workout["exercises"] = fetch_slots(conn, workout_id)
    return workout


def _parse_day(value: Optional[str], field: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid {field}: {value} (expected YYYY-MM-DD)")


def create_mcp_server(config: Optional[MCPConfig] = None) -> FastMCP:
    """Create and configure the LiftLog MCP server."""
    if config is None:
        if "LIFTLOG_DB_PATH" not in os.environ:
            raise ValueError("LIFTLOG_DB_PATH environment variable must be set")

        db_path = Path(os.environ["LIFTLOG_DB_PATH"])
        config = MCPConfig.from_db_path(db_path)

    config.validate()
    db_manager = DatabaseManager(config)
    mcp = FastMCP("LiftLog Workout Tracker")

    @mcp.tool()
    def list_exercises() -> List[Dict[str, Any]]:
        """WHEN TO USE: Before building a workout, to see which exercises exist.

        Returns:
            All exercises with their default sets, reps and weight, ordered by name
        """
        return db_manager.execute_query(
            "SELECT * FROM exercises ORDER BY name COLLATE NOCASE, id"
        )

    @mcp.tool()
    def create_exercise(
        name: str,
        default_sets: int = 3,
        default_reps: int = 10,
        default_weight: float = 20.0,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """WHEN TO USE: When a workout needs an exercise that is not in the library yet.

        Args:
            name: Exercise name (e.g., "Bench Press")
            default_sets: Sets used when the exercise is added to a workout
            default_reps: Reps per set used by default
            default_weight: Starting weight in kg
            description: Optional cues or notes

        Returns:
            The created exercise
        """
        try:
            with db_manager.transaction() as cursor:
                exercise_id = _create_exercise(
                    cursor, name, description, default_sets, default_reps, default_weight
                )
            log.info("Created exercise %s via MCP", exercise_id)
            return db_manager.execute_query("SELECT * FROM exercises WHERE id = ?", [exercise_id])[0]
        except Exception as e:
            raise ValueError(f"Failed to create exercise: {str(e)}")

    @mcp.tool()
    def list_workouts() -> List[Dict[str, Any]]:
        """WHEN TO USE: When you need an overview of the saved workouts.

        Returns:
            Workouts, newest first, with their exercise counts
        """
        return db_manager.execute_query("""
            SELECT w.*, COUNT(we.id) AS exercise_count
            FROM workouts w
            LEFT JOIN workout_exercises we ON we.workout_id = w.id
            GROUP BY w.id
            ORDER BY w.date DESC, w.id DESC
        """)

    @mcp.tool()
    def get_workout(workout_id: int) -> Dict[str, Any]:
        """WHEN TO USE: When you need the exercises, targets and suggested weights of a workout.

        Args:
            workout_id: Workout id (see list_workouts)

        Returns:
            The workout with its exercises in order
        """
        return _read_workout(db_manager, workout_id)

    @mcp.tool()
    def create_workout(name: str, exercise_ids: List[int]) -> Dict[str, Any]:
        """WHEN TO USE: When composing a new workout from library exercises.

        Args:
            name: Workout name (e.g., "Push Day")
            exercise_ids: Exercise ids in the order they should be performed

        Returns:
            The created workout with its exercises
        """
        try:
            with db_manager.transaction() as cursor:
                workout_id = _create_workout(cursor, name, exercise_ids)
        except Exception as e:
            raise ValueError(f"Failed to create workout: {str(e)}")
        log.info("Created workout %s via MCP", workout_id)
        return _read_workout(db_manager, workout_id)

    @mcp.tool()
    def log_exercise(
        workout_exercise_id: int,
        sets: Optional[int] = None,
        reps: Optional[int] = None,
        weight: Optional[float] = None
    ) -> Dict[str, Any]:
        """WHEN TO USE: When recording what was lifted for one exercise of a workout.

        The saved weight becomes the base for the next suggested weight.

        Args:
            workout_exercise_id: Id of the exercise slot inside the workout
            sets: Sets performed (unchanged if omitted)
            reps: Reps per set (unchanged if omitted)
            weight: Weight in kg (unchanged if omitted)

        Returns:
            The updated workout
        """
        try:
            with db_manager.transaction() as cursor:
                workout_id = _log_slot(cursor, workout_exercise_id, sets, reps, weight)
        except Exception as e:
            raise ValueError(f"Failed to log exercise: {str(e)}")
        return _read_workout(db_manager, workout_id)

    @mcp.tool()
    def move_exercise(workout_id: int, workout_exercise_id: int, new_index: int) -> Dict[str, Any]:
        """WHEN TO USE: When changing the order of exercises in a workout.

        Args:
            workout_id: Workout id
            workout_exercise_id: Slot to move
            new_index: Target position (0-based, clamped to the workout length)

        Returns:
            The workout in its new order
        """
        try:
            with db_manager.transaction() as cursor:
                _move_slot(cursor, workout_id, workout_exercise_id, new_index)
        except Exception as e:
            raise ValueError(f"Failed to move exercise: {str(e)}")
        return _read_workout(db_manager, workout_id)

    @mcp.tool()
    def complete_workout(
        workout_id: int,
        score: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """WHEN TO USE: When a workout session is finished and should go into the history.

        Args:
            workout_id: Workout that was performed
            score: How the session felt, 1 (awful) to 5 (great)
            notes: Optional free-form notes

        Returns:
            Confirmation with the history entry id
        """
        try:
            with db_manager.transaction() as cursor:
                archived_id = _archive_workout(cursor, workout_id, score, notes)
        except Exception as e:
            raise ValueError(f"Failed to complete workout: {str(e)}")
        log.info("Archived workout %s as history entry %s via MCP", workout_id, archived_id)
        return {
            "success": True,
            "history_id": archived_id,
            "message": f"Workout {workout_id} logged to history"
        }

    @mcp.tool()
    def get_workout_history(
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """WHEN TO USE: When analyzing what was actually lifted over a period.

        Args:
            start_date: Start date (YYYY-MM-DD), open-ended if omitted
            end_date: End date (YYYY-MM-DD), open-ended if omitted

        Returns:
            Completed sessions, newest first, with sets, reps and weight per exercise
        """
        start = _parse_day(start_date, "start_date")
        end = _parse_day(end_date, "end_date")
        if start and end and start > end:
            raise ValueError(f"Start date {start} is after end date {end}")

        with db_manager.get_connection(read_only=True) as conn:
            return load_archived(
                conn,
                day_start(start) if start else None,
                day_end(end) if end else None,
                descending=True,
                limit=config.max_rows,
            )

    @mcp.tool()
    def get_dashboard_stats(
        timeframe: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ) -> Dict[str, Any]:
        """WHEN TO USE: When you want training totals and trends for a period.

        Args:
            timeframe: week, month, quarter, year, all or custom. Defaults to
                custom when start_date is given, otherwise month
            start_date: Start date (YYYY-MM-DD), required for custom
            end_date: End date (YYYY-MM-DD), defaults to today

        Returns:
            Total workouts, total volume, average score, changes against the
            previous period, per-session volume and per-exercise weight series
        """
        start, end = resolve_date_range(
            timeframe,
            _parse_day(start_date, "start_date"),
            _parse_day(end_date, "end_date"),
        )
        with db_manager.get_connection(read_only=True) as conn:
            return dashboard_stats(conn, start, end)

    @mcp.resource("file://liftlog_guide")
    def liftlog_guide() -> str:
        """How LiftLog data is organised."""
        return _get_liftlog_guide()

    return mcp


def _get_liftlog_guide() -> str:
    return """
# LiftLog Guide

## Concepts
- **Exercise**: a library entry with default sets, reps and weight (kg).
- **Workout**: a named, ordered list of exercises. Each entry (a workout
  exercise) carries its own sets, reps and weight, starting from the
  exercise defaults.
- **History**: completing a workout snapshots its exercises, with an
  optional 1-5 score, into the history. Later edits to the workout do not
  change past sessions.

## Typical flow
1. `list_exercises` and `create_exercise` for anything missing
2. `create_workout` with exercise ids in performance order
3. `log_exercise` for each exercise as it is performed
4. `complete_workout` with a score when done
5. `get_dashboard_stats` / `get_workout_history` to review progress

## Progression
The suggested weight for an exercise is the last logged weight plus 2.5 kg,
rounded to the nearest 0.5 kg.

## Volume
Session volume is the sum of weight x sets x reps over its exercises.
    """.strip()


def main():
    """Main entry point for the LiftLog MCP server."""
    logging.basicConfig(
        level=os.environ.get("LIFTLOG_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        mcp = create_mcp_server()
        mcp.run()
    except Exception:
        log.exception("Failed to start MCP server")
        raise


if __name__ == "__main__":
    main()
