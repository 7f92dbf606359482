from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from jsonschema import ValidationError as SchemaError
from jsonschema import validate as validate_schema

from config import BaseConfig
from logger import configure_logging
from services.models import DEPENDENCY_TYPES, Task, TaskDependency, parse_date
from services.scheduling import (
    calculate_project_buffer,
    calculate_schedule_efficiency,
    find_bottleneck_tasks,
    find_critical_path,
    schedule,
)
from services.validation import (
    DIRECTIONS,
    InvalidDependencyGraph,
    ValidationResult,
    dependency_chains,
    validate,
    would_create_cycle,
)

DATE_SCHEMA = {"type": ["string", "null"]}

TASK_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": ["string", "null"]},
        "duration": {"type": ["number", "null"]},
        "startDate": DATE_SCHEMA,
    },
    "required": ["id"],
}

DEPENDENCY_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "null"]},
        "predecessorId": {"type": "string", "minLength": 1},
        "successorId": {"type": "string", "minLength": 1},
        "type": {"type": ["string", "null"]},
        "lag": {"type": ["number", "null"]},
    },
    "required": ["predecessorId", "successorId"],
}

SNAPSHOT_SCHEMA = {
    "type": "object",
    "properties": {
        "tasks": {"type": "array", "items": TASK_SCHEMA},
        "dependencies": {"type": "array", "items": DEPENDENCY_SCHEMA},
        "projectEndDate": DATE_SCHEMA,
        "today": DATE_SCHEMA,
        "threshold": {"type": "integer", "minimum": 0},
    },
    "required": ["tasks"],
}

CHECK_SCHEMA = {
    "type": "object",
    "properties": {
        "dependency": DEPENDENCY_SCHEMA,
        "dependencies": {"type": "array", "items": DEPENDENCY_SCHEMA},
    },
    "required": ["dependency"],
}

CHAINS_SCHEMA = {
    "type": "object",
    "properties": {
        "taskId": {"type": "string", "minLength": 1},
        "dependencies": {"type": "array", "items": DEPENDENCY_SCHEMA},
        "direction": {"enum": list(DIRECTIONS)},
    },
    "required": ["taskId"],
}

api = Blueprint("api", __name__, url_prefix="/api")


def _payload(schema: dict) -> dict:
    data = request.get_json(force=True, silent=True) or {}
    validate_schema(instance=data, schema=schema)
    return data


def _dependencies(data: dict) -> list:
    return [TaskDependency.from_dict(item) for item in data.get("dependencies") or []]


def _snapshot(data: dict):
    return [Task.from_dict(item) for item in data["tasks"]], _dependencies(data)


def _rejected(result: ValidationResult):
    return jsonify({"ok": False, "error": "; ".join(result.errors), **result.to_dict()}), 400


@api.get("/health")
def health():
    return jsonify({"ok": True, "dependencyTypes": list(DEPENDENCY_TYPES)})


@api.post("/validate")
def validate_snapshot():
    tasks, dependencies = _snapshot(_payload(SNAPSHOT_SCHEMA))
    result = validate(tasks, dependencies)
    return jsonify({"ok": True, "result": result.to_dict()})


@api.post("/schedule")
def schedule_snapshot():
    data = _payload(SNAPSHOT_SCHEMA)
    tasks, dependencies = _snapshot(data)
    outcome = schedule(
        tasks,
        dependencies,
        project_end_date=parse_date(data.get("projectEndDate")),
        today=parse_date(data.get("today")),
    )
    if not outcome.ok:
        current_app.logger.info(f"Schedule rejected: {outcome.validation.errors}")
        return _rejected(outcome.validation)
    return jsonify({"ok": True, "result": outcome.to_dict()})


@api.post("/critical-path")
def critical_path_summary():
    data = _payload(SNAPSHOT_SCHEMA)
    tasks, dependencies = _snapshot(data)
    result = find_critical_path(
        tasks,
        dependencies,
        project_end_date=parse_date(data.get("projectEndDate")),
        today=parse_date(data.get("today")),
    )
    return jsonify({"ok": True, "result": result.to_dict()})


@api.post("/efficiency")
def efficiency():
    data = _payload(SNAPSHOT_SCHEMA)
    tasks, dependencies = _snapshot(data)
    threshold = data.get("threshold", current_app.config["BOTTLENECK_THRESHOLD_DAYS"])
    today = parse_date(data.get("today"))
    result = calculate_schedule_efficiency(tasks, dependencies, threshold=threshold, today=today)
    bottlenecks = find_bottleneck_tasks(tasks, dependencies, threshold=threshold, today=today)
    return jsonify({
        "ok": True,
        "result": {
            **result.to_dict(),
            "projectBuffer": calculate_project_buffer(tasks, dependencies, today=today),
            "bottlenecks": [task.to_dict() for task in bottlenecks],
        },
    })


@api.post("/dependencies/check")
def check_dependency():
    data = _payload(CHECK_SCHEMA)
    candidate = TaskDependency.from_dict(data["dependency"])
    return jsonify({"ok": True, "result": {"wouldCreateCycle": would_create_cycle(candidate, _dependencies(data))}})


@api.post("/dependencies/chains")
def chains():
    data = _payload(CHAINS_SCHEMA)
    result = dependency_chains(data["taskId"], _dependencies(data), data.get("direction", "predecessors"))
    return jsonify({"ok": True, "result": {"chains": result}})


def create_app(config_class: Optional[type] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class or BaseConfig)
    app.json.sort_keys = app.config["JSON_SORT_KEYS"]
    configure_logging(app.config["LOG_LEVEL"])

    app.register_blueprint(api)

    @app.errorhandler(SchemaError)
    def invalid_request(exc):
        return jsonify({"ok": False, "error": f"Invalid request: {exc.message}"}), 400

    @app.errorhandler(InvalidDependencyGraph)
    def invalid_graph(exc):
        return _rejected(exc.result)

    @app.errorhandler(ValueError)
    def invalid_value(exc):
        app.logger.warning(f"Rejected request: {exc}")
        return jsonify({"ok": False, "error": str(exc)}), 400

    return app


if __name__ == "__main__":
    from config import DevelopmentConfig

    create_app(DevelopmentConfig).run(debug=True)
