"""Integration tests for session logging and workout history."""

import pytest


@pytest.mark.integration
def test_archive_snapshots_current_values(client, sample_workout):
    workout_id = sample_workout["id"]
    bench = sample_workout["exercises"][0]
    client.patch(f"/api/workout-exercises/{bench['id']}", json={"weight": 65, "reps": 6})

    response = client.post(
        f"/api/workouts/{workout_id}/archive",
        json={"score": 4, "notes": "Felt strong", "date": "2024-03-01T18:00:00Z"},
    )
    assert response.status_code == 201
    entry = response.json()

    assert entry["name"] == "Full Body"
    assert entry["workout_id"] == workout_id
    assert entry["score"] == 4
    assert entry["notes"] == "Felt strong"
    assert entry["date"] == "2024-03-01T18:00:00.000000Z"
    assert [e["exercise_name"] for e in entry["exercises"]] == ["Bench Press", "Squat", "Barbell Row"]
    assert (entry["exercises"][0]["reps"], entry["exercises"][0]["weight"]) == (6, 65)


@pytest.mark.integration
def test_archive_without_body_defaults_to_now(client, sample_workout):
    response = client.post(f"/api/workouts/{sample_workout['id']}/archive")
    assert response.status_code == 201
    entry = response.json()
    assert entry["score"] is None
    assert entry["date"].endswith("Z")


@pytest.mark.integration
def test_snapshot_is_independent_of_later_edits(client, sample_workout):
    entry = client.post(f"/api/workouts/{sample_workout['id']}/archive", json={"score": 3}).json()

    bench = sample_workout["exercises"][0]
    client.patch(f"/api/workout-exercises/{bench['id']}", json={"weight": 100})
    client.patch(f"/api/workouts/{sample_workout['id']}", json={"name": "Renamed"})

    stored = client.get(f"/api/history/{entry['id']}").json()
    assert stored["name"] == "Full Body"
    assert stored["exercises"][0]["weight"] == 60


@pytest.mark.integration
@pytest.mark.parametrize("score", [0, 6])
def test_archive_rejects_bad_score(client, sample_workout, score):
    response = client.post(f"/api/workouts/{sample_workout['id']}/archive", json={"score": score})
    assert response.status_code == 422


@pytest.mark.integration
def test_archive_errors(client, sample_workout):
    assert client.post("/api/workouts/9999/archive", json={}).status_code == 404

    for slot in sample_workout["exercises"]:
        client.delete(f"/api/workout-exercises/{slot['id']}")
    response = client.post(f"/api/workouts/{sample_workout['id']}/archive", json={})
    assert response.status_code == 400


@pytest.mark.integration
def test_list_history_newest_first(client, seeded_history):
    history = client.get("/api/history").json()

    assert [h["date"][:10] for h in history] == ["2024-03-05", "2024-03-05", "2024-03-01", "2024-02-27"]
    assert [h["score"] for h in history] == [5, 4, 3, 2]
    assert all(len(h["exercises"]) == 3 for h in history)


@pytest.mark.integration
def test_list_history_range(client, seeded_history):
    history = client.get("/api/history", params={"start": "2024-03-01", "end": "2024-03-04"}).json()
    assert [h["score"] for h in history] == [3]

    history = client.get("/api/history", params={"start": "2024-03-05"}).json()
    assert [h["score"] for h in history] == [5, 4]

    response = client.get("/api/history", params={"start": "2024-03-05", "end": "2024-03-01"})
    assert response.status_code == 400


@pytest.mark.integration
def test_recent_activity(client, seeded_history):
    recent = client.get("/api/history/recent", params={"limit": 2}).json()
    assert [r["score"] for r in recent] == [5, 4]
    assert set(recent[0]) == {"id", "name", "date", "score"}

    assert len(client.get("/api/history/recent").json()) == 4


@pytest.mark.integration
def test_history_survives_workout_deletion(client, seeded_history):
    client.delete(f"/api/workouts/{seeded_history['workout']['id']}")

    history = client.get("/api/history").json()
    assert len(history) == 4
    assert all(h["workout_id"] is None for h in history)


@pytest.mark.integration
def test_delete_history_entry(client, seeded_history):
    entry_id = seeded_history["entries"][0]["id"]

    assert client.delete(f"/api/history/{entry_id}").status_code == 200
    assert client.get(f"/api/history/{entry_id}").status_code == 404
    assert client.delete(f"/api/history/{entry_id}").status_code == 404
    assert len(client.get("/api/history").json()) == 3
