"""
Runtime configuration for the MedTracker engine.
Values below are defaults; each can be overridden from the environment (or a
.env file at the project root).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# --------------------------------------------------------------------------------------
# Timezone reported by the host at startup (IANA identifier)
# --------------------------------------------------------------------------------------
TIMEZONE = os.getenv("MEDTRACKER_TIMEZONE", "UTC")

# --------------------------------------------------------------------------------------
# Dose log bounds (seconds)
# --------------------------------------------------------------------------------------
# A dose may be logged at most this far ahead of "now"
TAKEN_FORWARD_SKEW_S = int(os.getenv("MEDTRACKER_TAKEN_FORWARD_SKEW_S", "3600"))
# ... and at most this far before it was due
TAKEN_LOOKBACK_S = int(os.getenv("MEDTRACKER_TAKEN_LOOKBACK_S", str(7 * 24 * 3600)))
# Pending doses older than this are swept to 'missed'
OVERDUE_GRACE_S = int(os.getenv("MEDTRACKER_OVERDUE_GRACE_S", str(4 * 3600)))

# --------------------------------------------------------------------------------------
# Timezone changes
# --------------------------------------------------------------------------------------
LARGE_OFFSET_CHANGE_H = float(os.getenv("MEDTRACKER_LARGE_OFFSET_CHANGE_H", "12"))

# --------------------------------------------------------------------------------------
# Adherence: "resolved_only" (pending excluded) or "all_records"
# --------------------------------------------------------------------------------------
ADHERENCE_POLICY = os.getenv("MEDTRACKER_ADHERENCE_POLICY", "resolved_only")

# --------------------------------------------------------------------------------------
# Trigger jobs (APScheduler)
# --------------------------------------------------------------------------------------
MISFIRE_GRACE_S = int(os.getenv("MEDTRACKER_MISFIRE_GRACE_S", "300"))

# --------------------------------------------------------------------------------------
# Files
# --------------------------------------------------------------------------------------
SCHEDULES_FILE = os.getenv(
    "MEDTRACKER_SCHEDULES_FILE",
    os.path.join(os.path.dirname(__file__), "schedules.yaml"),
)
AUDIT_LOG_FILE = os.getenv("MEDTRACKER_AUDIT_LOG_FILE", "medtracker/logs/audit.log")
AUDIT_LOG_MAX_BYTES = int(os.getenv("MEDTRACKER_AUDIT_LOG_MAX_BYTES", "1000000"))
AUDIT_LOG_BACKUPS = int(os.getenv("MEDTRACKER_AUDIT_LOG_BACKUPS", "10"))
CONSOLE_LOG_LEVEL = os.getenv("MEDTRACKER_CONSOLE_LOG_LEVEL", "INFO").upper()
