from flask import jsonify


class StoreError(Exception):
    """Raised when the record store reports a failure."""


class MissingSchemaError(StoreError):
    """The backing table for a read or write has not been provisioned."""

    def __init__(self, table: str, message: str = ""):
        self.table = table
        super().__init__(message or f"Table '{table}' does not exist")


class DuplicateEntryError(StoreError):
    """A write collided with a unique key (for example a section that already exists)."""

    def __init__(self, table: str, message: str = ""):
        self.table = table
        super().__init__(message or f"Duplicate entry in '{table}'")


class PersistenceError(StoreError):
    """A class-record save failed at one of its stages ("config" or "scores")."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"Failed to save {stage}: {message}")


def store_error_response(exc: StoreError):
    """JSON body and status code for a store failure raised inside a route."""
    if isinstance(exc, MissingSchemaError):
        return (
            jsonify(
                {
                    "error": "missing_schema",
                    "table": exc.table,
                    "message": "Database table is not provisioned; run the schema setup.",
                }
            ),
            409,
        )
    if isinstance(exc, DuplicateEntryError):
        return jsonify({"error": "duplicate", "table": exc.table, "message": str(exc)}), 409
    if isinstance(exc, PersistenceError):
        return jsonify({"error": "save_failed", "stage": exc.stage, "message": str(exc)}), 502
    return jsonify({"error": "database_error", "message": str(exc)}), 500
