import pytest
from jsonschema import validate

from app import create_app
from config import TestingConfig

NODE_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "earliestStart": {"type": "string"},
        "earliestFinish": {"type": "string"},
        "latestStart": {"type": "string"},
        "latestFinish": {"type": "string"},
        "float": {"type": "integer", "minimum": 0},
        "isCritical": {"type": "boolean"},
        "isInfeasible": {"type": "boolean"},
        "predecessors": {"type": "array", "items": {"type": "string"}},
        "successors": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["id", "earliestStart", "earliestFinish", "latestStart", "latestFinish", "float", "isCritical"],
}

SCHEDULE_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "ok": {"const": True},
        "result": {
            "type": "object",
            "properties": {
                "projectDuration": {"type": "integer"},
                "criticalPath": {"type": "array", "items": {"type": "string"}},
                "nodes": {"type": "array", "items": NODE_SCHEMA},
                "warnings": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["projectDuration", "criticalPath", "nodes", "warnings"],
        },
    },
    "required": ["ok", "result"],
}

ERROR_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "ok": {"const": False},
        "error": {"type": "string", "minLength": 1},
    },
    "required": ["ok", "error"],
}

BRANCH_PAYLOAD = {
    "tasks": [
        {"id": "A", "name": "Task A", "duration": 1, "startDate": "2024-01-01"},
        {"id": "B", "name": "Task B", "duration": 5},
        {"id": "C", "name": "Task C", "duration": 1},
        {"id": "D", "name": "Task D", "duration": 2},
    ],
    "dependencies": [
        {"id": "d1", "predecessorId": "A", "successorId": "B", "type": "FS", "lag": 0},
        {"id": "d2", "predecessorId": "A", "successorId": "C", "type": "FS", "lag": 0},
        {"id": "d3", "predecessorId": "B", "successorId": "D", "type": "FS", "lag": 0},
        {"id": "d4", "predecessorId": "C", "successorId": "D"},
    ],
}

CYCLE_DEPENDENCIES = [
    {"id": "d1", "predecessorId": "A", "successorId": "B"},
    {"id": "d2", "predecessorId": "B", "successorId": "C"},
    {"id": "d3", "predecessorId": "C", "successorId": "A"},
]

CYCLE_PAYLOAD = {
    "tasks": [{"id": "A", "duration": 1}, {"id": "B", "duration": 1}, {"id": "C", "duration": 1}],
    "dependencies": CYCLE_DEPENDENCIES,
}


@pytest.fixture
def app():
    return create_app(TestingConfig)


@pytest.fixture
def client(app):
    return app.test_client()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True, "dependencyTypes": ["FS", "SS", "FF", "SF"]}


def test_validate_reports_findings_as_data(client):
    resp = client.post("/api/validate", json=CYCLE_PAYLOAD)
    assert resp.status_code == 200
    result = resp.get_json()["result"]
    assert result["isValid"] is False
    assert "Circular dependency detected: tasks form a dependency loop" in result["errors"]
    assert result["warnings"] == []


def test_schedule(client):
    resp = client.post("/api/schedule", json=BRANCH_PAYLOAD)
    assert resp.status_code == 200, f"Expected HTTP 200 from /schedule, got {resp.status_code}"
    data = resp.get_json()
    validate(instance=data, schema=SCHEDULE_RESPONSE_SCHEMA)

    result = data["result"]
    assert result["projectDuration"] == 8
    assert result["criticalPath"] == ["A", "B", "D"]
    by_id = {node["id"]: node for node in result["nodes"]}
    assert by_id["C"]["float"] == 4
    assert by_id["C"]["isCritical"] is False
    assert by_id["D"]["earliestStart"] == "2024-01-07"
    assert by_id["D"]["earliestFinish"] == "2024-01-09"
    assert by_id["A"]["successors"] == ["B", "C"]


def test_schedule_with_project_end_date(client):
    payload = {**BRANCH_PAYLOAD, "projectEndDate": "2024-01-11"}
    result = client.post("/api/schedule", json=payload).get_json()["result"]
    assert result["criticalPath"] == []
    assert {node["id"]: node["float"] for node in result["nodes"]} == {"A": 2, "B": 2, "C": 6, "D": 2}


def test_schedule_flags_infeasible_deadline(client):
    payload = {**BRANCH_PAYLOAD, "projectEndDate": "2024-01-05T12:00:00Z"}
    result = client.post("/api/schedule", json=payload).get_json()["result"]
    assert result["isInfeasible"] is True
    by_id = {node["id"]: node for node in result["nodes"]}
    assert by_id["D"]["isInfeasible"] is True
    assert by_id["D"]["float"] == 0


def test_schedule_root_uses_today(client):
    payload = {"tasks": [{"id": "A", "duration": 2}], "today": "2025-03-01"}
    result = client.post("/api/schedule", json=payload).get_json()["result"]
    assert result["nodes"][0]["earliestStart"] == "2025-03-01"
    assert result["nodes"][0]["earliestFinish"] == "2025-03-03"


def test_schedule_rejects_cycle(client):
    resp = client.post("/api/schedule", json=CYCLE_PAYLOAD)
    assert resp.status_code == 400, f"Expected HTTP 400 for cycle detection, got {resp.status_code}"
    data = resp.get_json()
    validate(instance=data, schema=ERROR_RESPONSE_SCHEMA)
    assert data["isValid"] is False
    assert "Circular dependency detected" in data["error"]


def test_schedule_rejects_unknown_task(client):
    payload = {"tasks": [{"id": "A", "duration": 1}], "dependencies": [{"predecessorId": "A", "successorId": "B"}]}
    data = client.post("/api/schedule", json=payload).get_json()
    assert data["ok"] is False
    assert data["errors"] == ["Dependency 1: invalid successor task id 'B'"]


def test_malformed_payload(client):
    resp = client.post("/api/schedule", json={"dependencies": []})
    assert resp.status_code == 400
    data = resp.get_json()
    validate(instance=data, schema=ERROR_RESPONSE_SCHEMA)
    assert "'tasks' is a required property" in data["error"]


def test_non_numeric_duration(client):
    resp = client.post("/api/validate", json={"tasks": [{"id": "A", "duration": "x"}]})
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_invalid_date(client):
    resp = client.post("/api/schedule", json={**BRANCH_PAYLOAD, "projectEndDate": "soon"})
    assert resp.status_code == 400
    assert "Invalid date 'soon'" in resp.get_json()["error"]


def test_critical_path_summary(client):
    resp = client.post("/api/critical-path", json=BRANCH_PAYLOAD)
    assert resp.status_code == 200
    result = resp.get_json()["result"]
    assert [t["id"] for t in result["criticalTasks"]] == ["A", "B", "D"]
    assert result["projectDuration"] == 8
    assert result["totalFloat"] == 4
    assert result["criticalPathLength"] == 3


def test_critical_path_summary_rejects_cycle(client):
    resp = client.post("/api/critical-path", json=CYCLE_PAYLOAD)
    assert resp.status_code == 400
    assert resp.get_json()["isValid"] is False


def test_efficiency(client):
    resp = client.post("/api/efficiency", json={**BRANCH_PAYLOAD, "threshold": 5})
    assert resp.status_code == 200
    result = resp.get_json()["result"]
    assert result["scheduleRisk"] == "high"
    assert result["projectBuffer"] == 4
    assert [t["id"] for t in result["bottlenecks"]] == ["C"]


def test_efficiency_uses_configured_threshold(app, client):
    app.config["BOTTLENECK_THRESHOLD_DAYS"] = 4
    result = client.post("/api/efficiency", json=BRANCH_PAYLOAD).get_json()["result"]
    assert result["bottleneckTasks"] == 1


def test_dependency_check(client):
    payload = {"dependency": {"predecessorId": "C", "successorId": "A"}, "dependencies": CYCLE_DEPENDENCIES[:2]}
    resp = client.post("/api/dependencies/check", json=payload)
    assert resp.get_json()["result"] == {"wouldCreateCycle": True}

    payload["dependency"] = {"predecessorId": "A", "successorId": "C"}
    assert client.post("/api/dependencies/check", json=payload).get_json()["result"] == {"wouldCreateCycle": False}


def test_dependency_chains(client):
    payload = {"taskId": "D", "dependencies": BRANCH_PAYLOAD["dependencies"]}
    result = client.post("/api/dependencies/chains", json=payload).get_json()["result"]
    assert result["chains"] == [["D", "B", "A"], ["D", "C", "A"]]

    payload["direction"] = "upwards"
    assert client.post("/api/dependencies/chains", json=payload).status_code == 400


def test_efficiency_uses_today_for_unanchored_roots(client):
    payload = {
        "tasks": [
            {"id": "A", "duration": 1, "startDate": "2024-01-01"},
            {"id": "B", "duration": 1},
            {"id": "C", "duration": 1},
        ],
        "dependencies": [
            {"predecessorId": "A", "successorId": "C"},
            {"predecessorId": "B", "successorId": "C"},
        ],
        "today": "2024-01-01",
    }
    scheduled = client.post("/api/schedule", json=payload).get_json()["result"]
    result = client.post("/api/efficiency", json=payload).get_json()["result"]
    assert sum(node["float"] for node in scheduled["nodes"]) == 0
    assert result["projectBuffer"] == 0, f"Expected buffer 0, got {result['projectBuffer']}"
    assert result["bottlenecks"] == []


def test_schedule_rejects_dates_past_the_calendar(client):
    payload = {
        "tasks": [{"id": "A", "duration": 1, "startDate": "2024-01-01"}, {"id": "B", "duration": 1}],
        "dependencies": [{"predecessorId": "A", "successorId": "B", "lag": 3000000}],
    }
    resp = client.post("/api/schedule", json=payload)
    assert resp.status_code == 400, f"Expected HTTP 400 for out-of-range dates, got {resp.status_code}"
    data = resp.get_json()
    validate(instance=data, schema=ERROR_RESPONSE_SCHEMA)
    assert "outside the supported calendar" in data["error"]
