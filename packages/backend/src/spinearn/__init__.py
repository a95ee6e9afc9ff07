"""SpinEarn — rewards platform backend.

Admin message inbox, live unread-count synchronization over
PostgreSQL LISTEN/NOTIFY, and the daily leaderboard snapshot.
"""

__version__ = "0.1.0"
