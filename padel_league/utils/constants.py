"""
Constants used across the matchmaking and match-lifecycle rules.
"""

import os

# Cadence
WEEK_CYCLE_DAYS = 7
COOLDOWN_DAYS = int(os.getenv("COOLDOWN_DAYS", "7"))  # competitive cooldown after a result
MATCH_DEADLINE_DAYS = int(os.getenv("MATCH_DEADLINE_DAYS", "7"))  # from match creation
CONFIRMATION_WINDOW_HOURS = int(os.getenv("CONFIRMATION_WINDOW_HOURS", "48"))
INACTIVITY_DAYS = int(os.getenv("INACTIVITY_DAYS", "30"))

# Scoring
POINTS_PER_WIN = 3

# Repeat-opponent safeguard: how many recent completed matches to look back over
RECENT_OPPONENT_WINDOW = 2

# Sweep intervals (seconds)
HOURLY = 60 * 60
DAILY = 24 * HOURLY
AUTO_CONFIRM_INTERVAL_SECONDS = HOURLY
QUEUED_RETRY_INTERVAL_SECONDS = HOURLY
COOLDOWN_EXPIRY_INTERVAL_SECONDS = DAILY
INACTIVITY_INTERVAL_SECONDS = DAILY
RETURN_REMINDER_INTERVAL_SECONDS = DAILY
NOTIFICATION_REDELIVERY_INTERVAL_SECONDS = 300  # 5 minutes

# Dispute reasons are stored in a bounded column
DISPUTE_REASON_MAX_LENGTH = 500
