"""Triage Service HTTP handler - manual assessment and risk history.

The main event processing happens in the risk.flagged subscriber
(worker.py). These endpoints are read-only decision aids for
responders and never publish to the pipeline.

Risk history is read from the store named by STORE_BACKEND. Only the
postgres backend is shared with the worker: the memory backend is
private to this process, so /users/<id>/risks stays empty there and
/ready reports the history as not shared.
"""
import logging
import os

from flask import Flask, request, jsonify

from sukoon.shared.database import StoreUnavailable
from sukoon.shared.utils import configure_pii_salt, format_timestamp, hash_pii
from sukoon.services.safety_service import ClassifierConfig, RiskClassifier
from .assessment import assess
from .config import TriagePolicy, TriageServiceConfig
from .runtime import build_history_store

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000
MAX_HISTORY_LIMIT = 100

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt from environment
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

service_config = TriageServiceConfig.from_env()
policy = TriagePolicy.from_env()
classifier = RiskClassifier(
    config=ClassifierConfig(pattern_version=os.getenv("PATTERN_VERSION", "2026.10.01")),
)
store = build_history_store(service_config)
history_shared = service_config.store_backend != "memory"

if not history_shared:
    logger.warning(
        "TRIAGE_HISTORY_PROCESS_LOCAL",
        extra={
            "store_backend": service_config.store_backend,
            "action": "SET_STORE_BACKEND_POSTGRES_TO_READ_WORKER_HISTORY",
        }
    )


def _error(message: str, code: str, status: int):
    return jsonify({"success": False, "error": message, "code": code}), status


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "triage-service",
        "pattern_version": classifier.config.pattern_version,
    }), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check."""
    if store is None or classifier is None:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({
        "status": "ready",
        "store_backend": service_config.store_backend,
        "history_shared": history_shared,
    }), 200


@app.route("/assess", methods=["POST"])
def manual_assessment():
    """Assess text against the user's recent risk count.

    Request Body:
        {
            "userId": "user_abc" (optional, only hashed for logs),
            "text": "text to assess",
            "context": {"recentRisks": 2} (optional)
        }

    Response:
        {
            "success": true,
            "data": {
                "riskLevel": "low" | "high" | "critical",
                "reasons": [...],
                "requiresEscalation": true | false,
                "recommendedActions": [...]
            }
        }
    """
    data = request.get_json(silent=True)
    if not data:
        logger.warning("ASSESS_REQUEST_INVALID", extra={"reason": "empty_body"})
        return _error("Request body required", "MISSING_BODY", 400)

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        logger.warning("ASSESS_REQUEST_INVALID", extra={"reason": "missing_text"})
        return _error("Text is required", "MISSING_TEXT", 400)
    if len(text) > MAX_TEXT_LENGTH:
        return _error("Text too long", "TEXT_TOO_LONG", 400)

    context = data.get("context") or {}
    recent_risks = context.get("recentRisks", 0) if isinstance(context, dict) else 0
    if isinstance(recent_risks, bool) or not isinstance(recent_risks, int) or recent_risks < 0:
        return _error("context.recentRisks must be a non-negative integer", "INVALID_CONTEXT", 400)

    assessment = assess(text, recent_risks=recent_risks, classifier=classifier, policy=policy)

    user_id = data.get("userId")
    logger.info(
        "MANUAL_ASSESSMENT_COMPLETED",
        extra={
            "user_id_hash": hash_pii(user_id) if user_id else None,
            "risk_level": assessment.risk_level.value,
            "requires_escalation": assessment.requires_escalation,
            "recent_risks": recent_risks,
        }
    )

    return jsonify({"success": True, "data": assessment.to_dict()}), 200


@app.route("/users/<user_id>/risks", methods=["GET"])
def risk_history(user_id: str):
    """Most recent stored risk events for a user, newest first.

    Query Params:
        limit: Max events (default 20, max 100)
    """
    try:
        limit = int(request.args.get("limit", "20"))
    except ValueError:
        return _error("limit must be an integer", "INVALID_LIMIT", 400)
    if limit < 1 or limit > MAX_HISTORY_LIMIT:
        return _error(f"limit must be 1-{MAX_HISTORY_LIMIT}", "INVALID_LIMIT", 400)

    try:
        events = store.recent_events(user_id, limit=limit)
        risks = []
        for event in events:
            decision = store.get_decision(event.decision_id)
            risks.append({
                "id": event.event_id,
                "userId": event.user_id,
                "createdAt": format_timestamp(event.created_at),
                "riskLevel": event.risk_level.value,
                "reason": event.reason,
                "sourceTextRef": event.source_text_ref,
                "escalated": event.escalated,
                "decision": decision.to_dict() if decision else None,
            })
    except StoreUnavailable as e:
        logger.error(
            "RISK_HISTORY_UNAVAILABLE",
            extra={"user_id_hash": hash_pii(user_id), "error": str(e)}
        )
        return _error("Risk history unavailable", "STORE_UNAVAILABLE", 503)

    return jsonify({"success": True, "data": risks}), 200


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    port = int(os.getenv("PORT", "8084"))
    app.run(host="0.0.0.0", port=port, debug=False)
