"""List sections, their advisers and enrolment using the app's DB helper.
Run from the repo root:

    python scripts/list_sections.py

This uses the same DB configuration as the app (.env / environment variables).
"""

import sys
import traceback

# Ensure we can import utils from parent directory
sys.path.insert(0, ".")

try:
    from utils.db_conn import close_db_connection, get_db_connection
    from utils.errors import MissingSchemaError, StoreError
    from utils.record_store import RecordStore
except Exception:
    print(
        "Failed to import the record store from utils. Make sure you're running from the repo root."
    )
    traceback.print_exc()
    sys.exit(1)

try:
    rows = RecordStore(get_db_connection).fetch_sections()
    if not rows:
        print("No sections found in the database (empty result set).")
    else:
        print(f"Found {len(rows)} sections:\n")
        for r in rows:
            adviser = r.get("adviser_name") or "(no adviser)"
            print(
                f"{r['grade_level']:<10} {r['section_name']:<20} {adviser:<30} {r.get('student_count', 0)} students"
            )
except MissingSchemaError as e:
    print(f"Table '{e.table}' does not exist. Start the app once to provision the schema.")
    sys.exit(2)
except StoreError:
    print("Database query failed:")
    traceback.print_exc()
    sys.exit(2)
finally:
    close_db_connection()

print("\nDone.")
