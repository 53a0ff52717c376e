import logging
import uuid

from flask import Blueprint, current_app, jsonify, request, session

from utils.auth_utils import ADMIN, HEAD_TEACHER, login_required, role_required
from utils.db_conn import init_database_with_app
from utils.errors import StoreError, store_error_response
from utils.report_card import SUBJECTS

logger = logging.getLogger(__name__)


admin_bp = Blueprint("admin", __name__)


def _store():
    return current_app.extensions["record_store"]


def _section_fields(data):
    grade_level = str(data.get("grade_level") or "").strip()
    section_name = str(data.get("section_name") or "").strip()
    if not (grade_level and section_name):
        return None, (jsonify({"error": "grade_level and section_name are required"}), 400)
    return (grade_level, section_name), None


# GET /api/admin/sections: sections with advisers and enrolment counts
@admin_bp.route("/api/admin/sections", methods=["GET"], endpoint="list_sections")
@login_required
@role_required(ADMIN, HEAD_TEACHER)
def list_sections():
    try:
        sections = _store().fetch_sections()
        return jsonify({"sections": sections})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error listing sections: {str(e)}")
        return jsonify({"error": "Failed to list sections"}), 500


# POST /api/admin/schema: create any missing tables (recovery for missing_schema)
@admin_bp.route("/api/admin/schema", methods=["POST"], endpoint="provision_schema")
@login_required
@role_required(ADMIN)
def provision_schema():
    logger.info("Schema provisioning requested")
    if init_database_with_app(current_app._get_current_object()):
        return jsonify({"success": True, "message": "Database tables are ready"})
    return jsonify({"success": False, "message": "Schema provisioning failed"}), 500


# POST /api/admin/sections: create a section, optionally with its adviser
@admin_bp.route("/api/admin/sections", methods=["POST"], endpoint="create_section")
@login_required
@role_required(ADMIN)
def create_section():
    data = request.get_json(silent=True) or {}
    fields, error = _section_fields(data)
    if error:
        return error
    grade_level, section_name = fields
    adviser_id = data.get("adviser_id") or None

    try:
        section_id = str(uuid.uuid4())
        _store().create_section(section_id, grade_level, section_name, adviser_id)
        logger.info(f"Admin {session.get('user_id')} created section {grade_level} - {section_name}")
        return (
            jsonify(
                {
                    "success": True,
                    "section": {
                        "id": section_id,
                        "grade_level": grade_level,
                        "section_name": section_name,
                        "adviser_id": adviser_id,
                    },
                }
            ),
            201,
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Failed to create section: {str(e)}")
        return jsonify({"error": "Failed to create section"}), 500


# PUT /api/admin/sections/<id>: rename a section; its students move with it
@admin_bp.route("/api/admin/sections/<section_id>", methods=["PUT"], endpoint="update_section")
@login_required
@role_required(ADMIN)
def update_section(section_id):
    data = request.get_json(silent=True) or {}
    fields, error = _section_fields(data)
    if error:
        return error
    grade_level, section_name = fields

    try:
        store = _store()
        if not store.fetch_section(section_id):
            return jsonify({"error": "Section not found"}), 404
        moved = store.update_section(section_id, grade_level, section_name)
        logger.info(
            f"Admin {session.get('user_id')} renamed section {section_id} to "
            f"{grade_level} - {section_name} ({moved} students moved)"
        )
        return jsonify(
            {
                "success": True,
                "section": {"id": section_id, "grade_level": grade_level, "section_name": section_name},
                "students_moved": moved,
            }
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Failed to update section {section_id}: {str(e)}")
        return jsonify({"error": "Failed to update section"}), 500


# PUT /api/admin/sections/<id>/adviser: assign or clear (null) the adviser
@admin_bp.route(
    "/api/admin/sections/<section_id>/adviser", methods=["PUT"], endpoint="assign_adviser"
)
@login_required
@role_required(ADMIN)
def assign_adviser(section_id):
    data = request.get_json(silent=True) or {}
    adviser_id = data.get("adviser_id") or None

    try:
        store = _store()
        if not store.fetch_section(section_id):
            return jsonify({"error": "Section not found"}), 404
        store.set_adviser(section_id, adviser_id)
        logger.info(f"Admin {session.get('user_id')} set adviser of {section_id} to {adviser_id}")
        return jsonify({"success": True, "section_id": section_id, "adviser_id": adviser_id})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Failed to assign adviser for {section_id}: {str(e)}")
        return jsonify({"error": "Failed to assign adviser"}), 500


# GET/PUT /api/admin/sections/<id>/assignments: subject teachers of a section
@admin_bp.route(
    "/api/admin/sections/<section_id>/assignments",
    methods=["GET"],
    endpoint="list_subject_teachers",
)
@login_required
@role_required(ADMIN, HEAD_TEACHER)
def list_subject_teachers(section_id):
    try:
        store = _store()
        if not store.fetch_section(section_id):
            return jsonify({"error": "Section not found"}), 404
        return jsonify(
            {"section_id": section_id, "assignments": store.fetch_section_assignments(section_id)}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Failed to list assignments for {section_id}: {str(e)}")
        return jsonify({"error": "Failed to list assignments"}), 500


@admin_bp.route(
    "/api/admin/sections/<section_id>/assignments",
    methods=["PUT"],
    endpoint="assign_subject_teacher",
)
@login_required
@role_required(ADMIN)
def assign_subject_teacher(section_id):
    data = request.get_json(silent=True) or {}
    subject = data.get("subject")
    teacher_id = data.get("teacher_id") or None
    if subject not in SUBJECTS:
        return jsonify({"error": f"Unknown subject: {subject}"}), 400

    try:
        store = _store()
        if not store.fetch_section(section_id):
            return jsonify({"error": "Section not found"}), 404
        store.assign_subject_teacher(section_id, subject, teacher_id)
        logger.info(
            f"Admin {session.get('user_id')} set {subject} teacher of {section_id} to {teacher_id}"
        )
        return jsonify(
            {"success": True, "section_id": section_id, "subject": subject, "teacher_id": teacher_id}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Failed to assign {subject} teacher for {section_id}: {str(e)}")
        return jsonify({"error": "Failed to assign subject teacher"}), 500
