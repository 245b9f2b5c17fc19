# File: backend/api.py

from flask import Flask, request, jsonify
from flask_cors import CORS

# Import Your Engine
from formula_dependencies import collect_references
from formula_errors import SimulationCancelled, SimulationError, SimulationTimeout
from formula_validation import blocking, check_expression, validate_workbook
from simulation_config import ApiConfig, SimulationConfig
from simulation_core import CancellationToken, run_simulation
from simulation_logging import get_logger
from workbook import Workbook

logger = get_logger(__name__)

app = Flask(__name__)
CORS(app)


def _error(err, status):
    return jsonify({"ok": False, "error": err.to_dict()}), status


def _bad_request(message):
    return jsonify({"ok": False, "error": {"kind": "bad_request", "message": message}}), 400


def _whole_number(value, name, default):
    # JSON true/false and 2.5 are not counts
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


@app.route("/validate_expression", methods=["POST"])
def handle_validate_expression():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _bad_request("No input data provided")

    expression = data.get("expression")
    known_ids = data.get("knownIds", [])
    if expression is not None and not isinstance(expression, str):
        return _bad_request("'expression' must be a string")
    if not isinstance(known_ids, list) or not all(isinstance(k, str) for k in known_ids):
        return _bad_request("'knownIds' must be a list of ids")

    node, issue = check_expression(expression, known_ids)
    if issue is not None:
        return jsonify({"ok": False, "error": issue.to_dict()}), 400
    return jsonify({"ok": True, "references": sorted(collect_references(node))})


@app.route("/validate_workbook", methods=["POST"])
def handle_validate_workbook():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _bad_request("No input data provided")
    try:
        workbook = Workbook.from_dict(data.get("workbook"))
    except SimulationError as e:
        return _error(e, 400)

    issues = validate_workbook(workbook)
    return jsonify({
        "ok": not blocking(issues),
        "issues": [issue.to_dict() for issue in issues],
    })


@app.route("/run_simulation", methods=["POST"])
def handle_simulation():
    # 1. Get the inputs from the request
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _bad_request("No input data provided")

    config = SimulationConfig()
    try:
        # 2. Parse and check the payload
        workbook = Workbook.from_dict(data.get("workbook"))
        iterations = _whole_number(data.get("iterations"), "iterations", config.iterations)
        seed = _whole_number(data.get("seed"), "seed", None)
        if seed is not None and seed < 0:
            raise ValueError("seed must be a non-negative integer")
        timeout = data.get("timeoutSeconds")
        token = CancellationToken.with_timeout(float(timeout)) if timeout else None
    except SimulationError as e:
        return _error(e, 400)
    except (TypeError, ValueError) as e:
        return _bad_request(f"Invalid simulation parameters: {e}")

    if not 1 <= iterations <= config.max_iterations:
        return _bad_request(f"iterations must be between 1 and {config.max_iterations}")

    # 3. Run Simulation & Analysis
    try:
        result = run_simulation(workbook, iterations, cancel_token=token, seed=seed, config=config)
    except SimulationTimeout as e:
        logger.warning("Simulation timed out after %ss", timeout)
        return _error(e, 408)
    except SimulationCancelled as e:
        return _error(e, 409)
    except SimulationError as e:
        return _error(e, 400)
    except Exception:
        logger.exception("Simulation failed")
        return jsonify({"ok": False, "error": {"kind": "internal_error",
                                               "message": "Server-side error"}}), 500

    # 4. Send the result back to the frontend
    return jsonify(result.to_dict())


if __name__ == "__main__":
    api_config = ApiConfig()
    app.run(host=api_config.host, port=api_config.port, debug=api_config.debug)
