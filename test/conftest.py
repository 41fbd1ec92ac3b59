"""Pytest configuration and fixtures for LiftLog tests."""

import os
import sys
import tempfile
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture(scope="function")
def temp_db_path():
    """Create a temporary database file for each test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield Path(db_path)
    # Cleanup after test
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture(scope="function")
def test_app(temp_db_path, monkeypatch):
    """
    Create a test FastAPI app with isolated database.
    Uses monkeypatch to override DATABASE_PATH.
    """
    from liftlog import server
    monkeypatch.setattr(server, "DATABASE_PATH", temp_db_path)

    # Initialize database with new path
    server.init_database()

    yield server.app


@pytest.fixture(scope="function")
def client(test_app):
    """Create a test client for the FastAPI app."""
    with TestClient(test_app) as c:
        yield c


@pytest.fixture
def sample_exercises(client):
    """Three library exercises created through the API, keyed by name."""
    created = {}
    for payload in [
        {"name": "Bench Press", "default_sets": 3, "default_reps": 8, "default_weight": 60},
        {"name": "Squat", "default_sets": 5, "default_reps": 5, "default_weight": 80},
        {"name": "Barbell Row", "description": "Overhand grip", "default_weight": 50},
    ]:
        response = client.post("/api/exercises", json=payload)
        assert response.status_code == 201
        created[payload["name"]] = response.json()
    return created


@pytest.fixture
def sample_workout(client, sample_exercises):
    """A workout with Bench Press, Squat and Barbell Row, in that order."""
    response = client.post("/api/workouts", json={
        "name": "Full Body",
        "exercise_ids": [
            sample_exercises["Bench Press"]["id"],
            sample_exercises["Squat"]["id"],
            sample_exercises["Barbell Row"]["id"],
        ],
    })
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def seeded_history(client, sample_workout):
    """
    Four logged sessions of the sample workout:
    2024-03-01 and 2024-03-05 (weights raised in between), 2024-03-05 again
    later that day, and 2024-02-27 in the preceding week.
    """
    workout_id = sample_workout["id"]
    slots = sample_workout["exercises"]

    def archive(day, score):
        response = client.post(
            f"/api/workouts/{workout_id}/archive",
            json={"score": score, "date": day},
        )
        assert response.status_code == 201
        return response.json()

    entries = [archive("2024-02-27T17:00:00Z", 2), archive("2024-03-01T18:00:00Z", 3)]

    # Heavier bench press from here on
    client.patch(f"/api/workout-exercises/{slots[0]['id']}", json={"weight": 62.5})
    entries.append(archive("2024-03-05T07:30:00Z", 4))
    entries.append(archive("2024-03-05T19:00:00Z", 5))

    return {"workout": sample_workout, "entries": entries}


@pytest.fixture
def far_east_timezone():
    """Run with the process local time zone set to UTC+14."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    original = os.environ.get("TZ")
    os.environ["TZ"] = "Etc/GMT-14"
    time.tzset()
    yield
    if original is None:
        del os.environ["TZ"]
    else:
        os.environ["TZ"] = original
    time.tzset()


# ==================== MCP Fixtures ====================

@pytest.fixture
def mcp_config(temp_db_path):
    """Create MCP config for testing."""
    from liftlog_mcp.config import MCPConfig
    from liftlog import server

    # Use init_database to create all tables
    server.init_database(db_path=temp_db_path)

    return MCPConfig(db_path=temp_db_path, max_rows=100)


@pytest.fixture
def db_manager(mcp_config):
    """Create DatabaseManager for testing."""
    from liftlog_mcp.server import DatabaseManager
    return DatabaseManager(mcp_config)
