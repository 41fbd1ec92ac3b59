"""Tests for the MCP tools and resource, called through the protocol client."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from liftlog_mcp.config import MCPConfig
from liftlog_mcp.server import create_mcp_server


def call_tool(mcp, name, /, **arguments):
    """Call a tool and return its structured result.

    Tools returning lists have their value wrapped under "result".
    """
    async def _call():
        async with Client(mcp) as client:
            result = await client.call_tool(name, arguments)
        return result.structured_content

    return asyncio.run(_call())


@pytest.fixture
def mcp(mcp_config):
    return create_mcp_server(mcp_config)


@pytest.fixture
def planned_workout(mcp):
    """Bench Press and Squat in a workout named Strength A."""
    bench = call_tool(mcp, "create_exercise", name="Bench Press", default_sets=3,
                      default_reps=8, default_weight=60)
    squat = call_tool(mcp, "create_exercise", name="Squat", default_sets=5,
                      default_reps=5, default_weight=80)
    return call_tool(mcp, "create_workout", name="Strength A",
                     exercise_ids=[bench["id"], squat["id"]])


@pytest.mark.integration
def test_registered_tools(mcp):
    async def _list():
        async with Client(mcp) as client:
            return {t.name for t in await client.list_tools()}

    assert asyncio.run(_list()) == {
        "list_exercises", "create_exercise", "list_workouts", "get_workout",
        "create_workout", "log_exercise", "move_exercise", "complete_workout",
        "get_workout_history", "get_dashboard_stats",
    }


@pytest.mark.integration
def test_guide_resource(mcp):
    async def _read():
        async with Client(mcp) as client:
            return await client.read_resource("file://liftlog_guide")

    contents = asyncio.run(_read())
    assert contents[0].text.startswith("# LiftLog Guide")
    assert "complete_workout" in contents[0].text


@pytest.mark.integration
def test_exercise_and_workout_tools(mcp, planned_workout):
    exercises = call_tool(mcp, "list_exercises")["result"]
    assert [e["name"] for e in exercises] == ["Bench Press", "Squat"]

    workouts = call_tool(mcp, "list_workouts")["result"]
    assert [(w["name"], w["exercise_count"]) for w in workouts] == [("Strength A", 2)]

    workout = call_tool(mcp, "get_workout", workout_id=planned_workout["id"])
    assert [s["exercise"]["name"] for s in workout["exercises"]] == ["Bench Press", "Squat"]
    assert workout["exercises"][1]["sets"] == 5

    with pytest.raises(ToolError, match="only once"):
        call_tool(mcp, "create_workout", name="Twice",
                  exercise_ids=[exercises[0]["id"], exercises[0]["id"]])
    with pytest.raises(ToolError, match="not found"):
        call_tool(mcp, "get_workout", workout_id=9999)


@pytest.mark.integration
def test_log_and_move_tools(mcp, planned_workout):
    bench_slot, squat_slot = [s["id"] for s in planned_workout["exercises"]]

    workout = call_tool(mcp, "log_exercise", workout_exercise_id=bench_slot, weight=62.5)
    assert workout["exercises"][0]["suggested_weight"] == 65

    workout = call_tool(mcp, "move_exercise", workout_id=planned_workout["id"],
                        workout_exercise_id=squat_slot, new_index=0)
    assert [s["id"] for s in workout["exercises"]] == [squat_slot, bench_slot]

    with pytest.raises(ToolError, match="not found"):
        call_tool(mcp, "log_exercise", workout_exercise_id=9999, weight=10)


@pytest.mark.integration
def test_complete_workout_tool(mcp, planned_workout):
    done = call_tool(mcp, "complete_workout", workout_id=planned_workout["id"],
                     score=4, notes="Solid")
    assert done["success"] is True

    history = call_tool(mcp, "get_workout_history")["result"]
    assert [h["id"] for h in history] == [done["history_id"]]
    assert history[0]["notes"] == "Solid"
    assert [e["exercise_name"] for e in history[0]["exercises"]] == ["Bench Press", "Squat"]

    with pytest.raises(ToolError, match="between 1 and 5"):
        call_tool(mcp, "complete_workout", workout_id=planned_workout["id"], score=7)


@pytest.mark.integration
def test_history_tool_range_checks(mcp, planned_workout):
    call_tool(mcp, "complete_workout", workout_id=planned_workout["id"], score=3)
    today = datetime.now(timezone.utc).date()

    assert len(call_tool(mcp, "get_workout_history", start_date=today.isoformat())["result"]) == 1
    assert call_tool(mcp, "get_workout_history", end_date="2024-01-01")["result"] == []

    with pytest.raises(ToolError, match="after end date"):
        call_tool(mcp, "get_workout_history", start_date="2024-03-05", end_date="2024-03-01")
    with pytest.raises(ToolError, match="expected YYYY-MM-DD"):
        call_tool(mcp, "get_workout_history", start_date="March")


@pytest.mark.integration
def test_history_tool_caps_rows_at_max_rows(mcp, mcp_config, planned_workout):
    for score in (3, 4, 5):
        call_tool(mcp, "complete_workout", workout_id=planned_workout["id"], score=score)

    capped = create_mcp_server(MCPConfig(db_path=mcp_config.db_path, max_rows=2))
    history = call_tool(capped, "get_workout_history")["result"]
    assert [h["score"] for h in history] == [5, 4]


@pytest.mark.integration
def test_dashboard_tool_start_date_implies_custom_range(mcp, planned_workout):
    call_tool(mcp, "complete_workout", workout_id=planned_workout["id"], score=4)
    today = datetime.now(timezone.utc).date()
    start = today - timedelta(days=400)

    stats = call_tool(mcp, "get_dashboard_stats", start_date=start.isoformat())

    assert stats["start"] == start.isoformat()
    assert stats["end"] == today.isoformat()
    assert stats["total_workouts"] == 1
    assert stats["total_weight"] == 60 * 3 * 8 + 80 * 5 * 5


@pytest.mark.integration
def test_dashboard_tool_presets_and_errors(mcp, planned_workout):
    call_tool(mcp, "complete_workout", workout_id=planned_workout["id"], score=2)
    today = datetime.now(timezone.utc).date()

    stats = call_tool(mcp, "get_dashboard_stats")
    assert stats["start"] == (today - timedelta(days=29)).isoformat()
    assert stats["total_workouts"] == 1

    assert call_tool(mcp, "get_dashboard_stats", timeframe="all")["start"] is None

    with pytest.raises(ToolError, match="needs a start"):
        call_tool(mcp, "get_dashboard_stats", timeframe="custom")
    with pytest.raises(ToolError, match="Unknown timeframe"):
        call_tool(mcp, "get_dashboard_stats", timeframe="fortnight")
