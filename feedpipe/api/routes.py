from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from feedpipe.errors import StoreError
from feedpipe.metrics.history import MetricsHistory
from feedpipe.storage.database import Database

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__)

MAX_DAYS = 365
MAX_LIMIT = 1000


def _get_database() -> Database:
    return current_app.config["DATABASE"]


def _get_history() -> MetricsHistory:
    return current_app.config["HISTORY"]


def _bounded_int(name: str, default: int, upper: int) -> int:
    value = request.args.get(name, default, type=int)
    return max(1, min(value, upper))


@api.route("/metrics/<content_id>", methods=["GET"])
def get_metrics(content_id: str) -> tuple:
    days = _bounded_int("days", 7, MAX_DAYS)
    limit = _bounded_int("limit", 100, MAX_LIMIT)
    try:
        return jsonify(_get_history().history_report(content_id, days=days, limit=limit)), 200
    except StoreError as exc:
        logger.exception("Error reading metrics for %s: %s", content_id, exc)
        return jsonify({"error": "Failed to fetch metrics history"}), 500


@api.route("/metrics/<content_id>", methods=["POST"])
def record_metrics(content_id: str) -> tuple:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be JSON"}), 400

    metrics = data.get("metrics")
    if not isinstance(metrics, dict) or not metrics:
        return jsonify({"error": "metrics object is required"}), 400

    try:
        snapshot = _get_history().record_snapshot(content_id, metrics)
    except StoreError as exc:
        logger.exception("Error saving metrics for %s: %s", content_id, exc)
        return jsonify({"error": "Failed to save metrics"}), 500

    return jsonify({
        "success": True,
        "data": {
            "id": snapshot.id,
            "content_id": snapshot.content_id,
            "recorded_at": snapshot.recorded_at.isoformat(),
            **snapshot.metrics,
        },
    }), 201


@api.route("/pipeline/status", methods=["GET"])
def pipeline_status() -> tuple:
    try:
        return jsonify({"records": _get_database().count_by_status()}), 200
    except StoreError as exc:
        logger.exception("Error reading pipeline status: %s", exc)
        return jsonify({"error": str(exc)}), 500
