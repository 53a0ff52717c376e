import logging
from typing import Optional, Tuple

from flask import Blueprint, current_app, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from utils.auth_utils import HEAD_TEACHER, TEACHER, login_required, role_required
from utils.class_record import ClassRecordAggregator
from utils.errors import StoreError, store_error_response
from utils.live import emit_class_record_saved
from utils.records import CategoryConfig, ScoreRecord

logger = logging.getLogger(__name__)


class_record_bp = Blueprint("class_record", __name__)


def _store():
    return current_app.extensions["record_store"]


def _context_from(source) -> Tuple[str, str, str, int]:
    """(grade_level, section, subject, quarter) from query args or a JSON body."""
    grade_level = str(source.get("grade_level") or "").strip()
    section = str(source.get("section") or "").strip()
    subject = str(source.get("subject") or "").strip()
    if not (grade_level and section and subject):
        raise ValueError("grade_level, section and subject are required")
    try:
        quarter = int(source.get("quarter"))
    except (TypeError, ValueError):
        raise ValueError("quarter must be 1-4")
    if not 1 <= quarter <= 4:
        raise ValueError("quarter must be 1-4")
    return grade_level, section, subject, quarter


def _deny_unassigned(grade_level, section, subject):
    """403 response unless the user advises the section or teaches the subject there."""
    if not _store().can_grade(session.get("user_id"), grade_level, section, subject):
        logger.warning(
            f"User {session.get('user_id')} is not assigned to {grade_level}/{section}/{subject}"
        )
        return jsonify({"error": "access_denied"}), 403
    return None


def _aggregator_from_payload(data: dict, context) -> ClassRecordAggregator:
    """Rebuild the gradebook the browser is editing.

    A posted "config" replaces the stored one and posted "scores" replace the
    stored records; whatever is omitted is loaded from the store.
    """
    grade_level, section, subject, quarter = context
    store = _store()
    aggregator = ClassRecordAggregator(store)

    posted_config = data.get("config")
    if isinstance(posted_config, dict):
        config = CategoryConfig.from_row(
            dict(
                posted_config,
                grade_level=grade_level,
                section=section,
                subject=subject,
                quarter=quarter,
            )
        )
    else:
        config = store.fetch_config(grade_level, section, subject, quarter)
        if config is None:
            config = CategoryConfig.default(grade_level, section, subject, quarter)

    students = store.fetch_students(grade_level, section)
    posted_scores = data.get("scores")
    if isinstance(posted_scores, list):
        records = [
            ScoreRecord.from_row(dict(row, subject=subject, quarter=quarter))
            for row in posted_scores
            if isinstance(row, dict) and row.get("student_id") is not None
        ]
    else:
        ids = [str(s.get("id")) for s in students]
        records = store.fetch_scores(ids, subject, quarter) if ids else []

    return aggregator.restore(config, students, records)


def _apply_edits(aggregator: ClassRecordAggregator, edits):
    """Apply single-cell edits: score, hps or weight."""
    for edit in edits or []:
        edit = edit if isinstance(edit, dict) else {}
        kind = edit.get("type")
        if kind == "score":
            aggregator.set_score(
                edit.get("student_id"), edit.get("category"), edit.get("item"), edit.get("value")
            )
        elif kind == "hps":
            aggregator.set_hps(edit.get("category"), edit.get("item"), edit.get("value"))
        elif kind == "weight":
            aggregator.set_weight(edit.get("category"), edit.get("value"))
        else:
            raise ValueError(f"Unknown edit type: {kind!r}")


def _state(aggregator: ClassRecordAggregator) -> dict:
    return {
        "config": aggregator.config.to_row(),
        "scores": [record.to_row() for record in aggregator.scores.values()],
        "roster": aggregator.compute_roster(),
    }


def _json_body() -> Optional[dict]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# GET /api/class-record: config, roster, scores and computed grades + csrf token
@class_record_bp.route("/api/class-record", methods=["GET"], endpoint="get_class_record")
@login_required
@role_required(TEACHER, HEAD_TEACHER)
def get_class_record():
    try:
        context = _context_from(request.args)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        denied = _deny_unassigned(*context[:3])
        if denied:
            return denied
        aggregator = ClassRecordAggregator(_store())
        aggregator.load_context(*context)
        payload = _state(aggregator)
        payload["students"] = aggregator.students
        payload["csrf_token"] = generate_csrf()
        return jsonify(payload)
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error loading class record {context}: {str(e)}")
        return jsonify({"error": "Failed to load class record"}), 500


# POST /api/class-record/compute: grade the posted state, optionally after cell edits
@class_record_bp.route(
    "/api/class-record/compute", methods=["POST"], endpoint="compute_class_record"
)
@login_required
@role_required(TEACHER, HEAD_TEACHER)
def compute_class_record():
    data = _json_body()
    if data is None:
        return jsonify({"error": "No data provided"}), 400
    try:
        context = _context_from(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        denied = _deny_unassigned(*context[:3])
        if denied:
            return denied
        aggregator = _aggregator_from_payload(data, context)
        try:
            _apply_edits(aggregator, data.get("edits"))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify(_state(aggregator))
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error computing class record {context}: {str(e)}")
        return jsonify({"error": "Failed to compute class record"}), 500


# POST /api/class-record/paste: spread a pasted spreadsheet block over the roster
@class_record_bp.route(
    "/api/class-record/paste", methods=["POST"], endpoint="paste_class_record"
)
@login_required
@role_required(TEACHER, HEAD_TEACHER)
def paste_class_record():
    data = _json_body()
    if data is None:
        return jsonify({"error": "No data provided"}), 400
    try:
        context = _context_from(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        denied = _deny_unassigned(*context[:3])
        if denied:
            return denied
        aggregator = _aggregator_from_payload(data, context)
        written = aggregator.bulk_paste(
            data.get("student_id"),
            data.get("category"),
            data.get("item", 1),
            data.get("text") or "",
        )
        logger.info(f"Pasted {written} cells into {context}")
        payload = _state(aggregator)
        payload["cells_written"] = written
        return jsonify(payload)
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error pasting into class record {context}: {str(e)}")
        return jsonify({"error": "Failed to paste scores"}), 500


# POST /api/class-record/save: persist config and every score record
@class_record_bp.route(
    "/api/class-record/save", methods=["POST"], endpoint="save_class_record"
)
@login_required
@role_required(TEACHER, HEAD_TEACHER)
def save_class_record():
    data = _json_body()
    if data is None:
        return jsonify({"error": "No data provided"}), 400
    if not isinstance(data.get("config"), dict):
        return jsonify({"error": "config is required"}), 400
    try:
        context = _context_from(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        denied = _deny_unassigned(*context[:3])
        if denied:
            return denied
        aggregator = _aggregator_from_payload(data, context)
        result = aggregator.save()
        emit_class_record_saved(aggregator.context, result)
        payload = _state(aggregator)
        payload.update(result)
        return jsonify(payload)
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error saving class record {context}: {str(e)}")
        return jsonify({"error": "Failed to save class record"}), 500
