"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Admin messages ──────────────────────────────────────

MESSAGE_BROADCAST = "message.broadcast"
MESSAGE_SENT = "message.sent"
MESSAGE_READ = "message.read"
MESSAGES_ALL_READ = "message.all_read"

# ─── Leaderboard ─────────────────────────────────────────

LEADERBOARD_SNAPSHOT_CREATED = "leaderboard.snapshot_created"

# ─── Maintenance ─────────────────────────────────────────

MESSAGES_PURGED = "message.purged"

# ─── Withdrawals ─────────────────────────────────────────

WITHDRAWAL_APPROVED = "withdrawal.approved"
WITHDRAWAL_REJECTED = "withdrawal.rejected"
