import logging
from flask_socketio import emit, join_room, leave_room, SocketIO


_socketio: SocketIO | None = None
_logger = logging.getLogger(__name__)


def initialize_live(socketio: SocketIO, logger: logging.Logger | None = None):
    """Provide socketio and optional logger to this module."""
    global _socketio, _logger
    _socketio = socketio
    if logger is not None:
        _logger = logger


def class_record_room(grade_level, section, subject, quarter) -> str:
    return f"class-record-{grade_level}-{section}-{subject}-{quarter}"


def _room_from_payload(data):
    data = data or {}
    try:
        quarter = int(data.get("quarter"))
    except (TypeError, ValueError):
        return None
    grade_level = data.get("grade_level")
    section = data.get("section")
    subject = data.get("subject")
    if not (grade_level and section and subject):
        return None
    return class_record_room(grade_level, section, subject, quarter)


def register_socketio_handlers(socketio: SocketIO):
    """Register Socket.IO event handlers. Call this after SocketIO(app) in app.py."""

    @socketio.on("connect")
    def _on_connect():
        emit("connected", {"message": "connected"})

    @socketio.on("subscribe_class_record")
    def _on_subscribe_class_record(data):
        room = _room_from_payload(data)
        if room is None:
            emit("error", {"message": "invalid class record context"})
            return
        join_room(room)
        emit("subscribed", {"room": room})

    @socketio.on("unsubscribe_class_record")
    def _on_unsubscribe_class_record(data):
        room = _room_from_payload(data)
        if room is not None:
            leave_room(room)


def emit_class_record_saved(context, result: dict):
    """Tell other open views of a class record that it was saved."""
    grade_level, section, subject, quarter = context
    payload = {
        "grade_level": grade_level,
        "section": section,
        "subject": subject,
        "quarter": quarter,
        "scores_saved": result.get("scores_saved", 0),
    }
    try:
        if _socketio is not None:
            _socketio.emit(
                "class_record_saved",
                payload,
                room=class_record_room(grade_level, section, subject, quarter),
            )
    except Exception as e:
        _logger.error(f"Failed to emit class_record_saved for {context}: {str(e)}")
