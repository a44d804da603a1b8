"""
Chat context API

GET  /api/chat/context?threadId=main   status for display
POST /api/chat/context                 {"threadId": "main", "action": "summarize" | "status"}
POST /api/chat/summarize               {"threadId": "main", "force": false}
GET  /api/chat/snapshots?thread=main   snapshot history, newest first
POST /api/chat/reset                   {"threadId": "main"}
"""

from __future__ import annotations

import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from homebase_context.config import ContextConfig
from homebase_context.context.models import ContextStatus, Snapshot
from homebase_context.errors import SummarizationFailedError, ValidationError
from homebase_context.service import ContextService
from homebase_context.storage import StorageError, StoreUnavailableError

LOGGER = logging.getLogger(__name__)

context_bp = Blueprint("context", __name__, url_prefix="/api/chat")

EXTENSION_KEY = "homebase_context"
DEFAULT_THREAD = "main"


def get_service() -> ContextService:
    return current_app.extensions[EXTENSION_KEY]


def _iso(value):
    return value.isoformat() if value is not None else None


def _snapshot_payload(snapshot: Snapshot) -> dict:
    return {
        "id": snapshot.id,
        "threadId": snapshot.thread_id,
        "summary": snapshot.summary,
        "keyPoints": snapshot.key_points,
        "entities": [e.to_dict() for e in snapshot.entities],
        "messageCount": snapshot.message_count,
        "tokenCount": snapshot.token_count,
        "compressedTokens": snapshot.compressed_tokens,
        "tokensSaved": snapshot.tokens_saved,
        "compressionRatio": f"{round(snapshot.compression_ratio * 100)}%",
        "firstMessageAt": _iso(snapshot.first_message_at),
        "lastMessageAt": _iso(snapshot.last_message_at),
        "dateRange": {
            "from": _iso(snapshot.first_message_at),
            "to": _iso(snapshot.last_message_at),
        },
        "createdAt": _iso(snapshot.created_at),
    }


def _status_payload(status: ContextStatus) -> dict:
    state = status.state
    return {
        "state": {
            "threadId": state.thread_id,
            "totalTokens": state.total_tokens,
            "activeMessageCount": state.active_message_count,
            "contextUtilization": state.context_utilization,
            "snapshotCount": state.snapshot_count,
            "lastSnapshotAt": _iso(state.last_snapshot_at),
            "stale": state.stale,
        },
        "snapshotCount": status.snapshot_count,
        "oldestSnapshotDate": _iso(status.oldest_snapshot_date),
        "latestSnapshotDate": _iso(status.latest_snapshot_date),
        "estimatedConversationLength": status.estimated_conversation_length,
    }


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@context_bp.route("/context", methods=["GET"])
def context_status():
    """Flattened context status for a thread"""
    thread_id = request.args.get("threadId") or request.args.get("thread") or DEFAULT_THREAD
    service = get_service()
    status = service.get_context_status(thread_id)
    state = status.state
    utilization = round(state.context_utilization)

    return jsonify({
        "ok": True,
        "threadId": thread_id,
        "context": {
            "utilization": utilization,
            "utilizationFormatted": f"{utilization}%",
            "contextUtilization": state.context_utilization,
            "totalTokens": state.total_tokens,
            "activeMessages": state.active_message_count,
            "snapshotCount": status.snapshot_count,
            "totalConversationLength": status.estimated_conversation_length,
            "oldestMemory": _iso(status.oldest_snapshot_date),
            "latestSnapshot": _iso(status.latest_snapshot_date),
            "lastSnapshotAt": _iso(state.last_snapshot_at),
            "status": service.policy.level(state),
            "needsSummarization": service.policy.needs_summarization(state),
            "stale": state.stale,
        },
    })


@context_bp.route("/context", methods=["POST"])
def context_action():
    """Run a context action: summarize (policy-gated) or status"""
    data = _json_body()
    thread_id = data.get("threadId")
    action = data.get("action", "status")
    service = get_service()

    if action == "status":
        return jsonify(_status_payload(service.get_context_status(thread_id)))

    if action == "summarize":
        outcome = service.summarize(thread_id)
        if outcome.snapshot is None:
            return jsonify({"ok": True, "action": "skipped", "reason": outcome.reason})
        return jsonify({
            "ok": True,
            "action": "summarized",
            "snapshot": _snapshot_payload(outcome.snapshot),
        })

    raise ValidationError(f"Unknown action: {action!r}")


@context_bp.route("/summarize", methods=["POST"])
def manual_summarize():
    """Manual summarization with before/after figures"""
    data = _json_body()
    thread_id = data.get("threadId", DEFAULT_THREAD)
    force = data.get("force", False)
    if not isinstance(force, bool):
        raise ValidationError("force must be a boolean")
    service = get_service()

    before = service.get_context_status(thread_id)
    outcome = service.summarize(thread_id, force=force)
    if outcome.snapshot is None:
        return jsonify({
            "ok": False,
            "error": "Summarization produced no snapshot",
            "reason": outcome.reason,
            "status": _status_payload(before),
        })

    after = service.get_context_status(thread_id)
    return jsonify({
        "ok": True,
        "snapshot": _snapshot_payload(outcome.snapshot),
        "before": {
            "utilization": round(before.state.context_utilization),
            "activeMessages": before.state.active_message_count,
            "totalTokens": before.state.total_tokens,
        },
        "after": {
            "utilization": round(after.state.context_utilization),
            "activeMessages": after.state.active_message_count,
            "totalTokens": after.state.total_tokens,
            "snapshotCount": after.snapshot_count,
        },
    })


@context_bp.route("/snapshots", methods=["GET"])
def snapshot_history():
    """All snapshots of a thread, newest first"""
    thread_id = request.args.get("thread") or request.args.get("threadId") or DEFAULT_THREAD
    snapshots = list(reversed(get_service().list_snapshots(thread_id)))

    return jsonify({
        "ok": True,
        "threadId": thread_id,
        "count": len(snapshots),
        "snapshots": [_snapshot_payload(s) for s in snapshots],
        "totalMessagesArchived": sum(s.message_count for s in snapshots),
        "totalTokensCompressed": sum(s.tokens_saved for s in snapshots),
    })


@context_bp.route("/reset", methods=["POST"])
def reset_thread():
    """Drop a thread's messages and snapshots"""
    data = _json_body()
    thread_id = data.get("threadId")
    if not isinstance(thread_id, str) or not thread_id:
        raise ValidationError("threadId is required")

    deleted = get_service().reset_thread(thread_id)
    LOGGER.info("[Context API] Reset thread %s (%d messages)", thread_id, deleted)
    return jsonify({"ok": True, "threadId": thread_id, "deleted": deleted})


def _error(message: str, code: str, status: int):
    return jsonify({"ok": False, "error": message, "code": code}), status


@context_bp.errorhandler(ValidationError)
def handle_validation(error: ValidationError):
    return _error(str(error), "validation_error", 400)


@context_bp.errorhandler(SummarizationFailedError)
def handle_summarization_failed(error: SummarizationFailedError):
    LOGGER.error("[Context API] %s", error)
    return _error(str(error), "summarization_failed", 502)


@context_bp.errorhandler(StoreUnavailableError)
def handle_store_unavailable(error: StoreUnavailableError):
    LOGGER.error("[Context API] Store unavailable: %s", error)
    return _error("Context store unavailable", "store_unavailable", 503)


@context_bp.errorhandler(StorageError)
def handle_storage_error(error: StorageError):
    LOGGER.error("[Context API] Storage error: %s", error)
    return _error("Failed to get context status", "storage_error", 500)


@context_bp.errorhandler(Exception)
def handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    LOGGER.exception("[Context API] Unhandled error")
    return _error("Internal server error", "internal_error", 500)


def create_app(
    service: ContextService | None = None,
    config: ContextConfig | None = None,
) -> Flask:
    """Flask app serving the context blueprint."""
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = service or ContextService(config)
    app.register_blueprint(context_bp)
    return app
