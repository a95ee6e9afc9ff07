"""Real-time infrastructure — change feed, unread sync, WebSockets.

Learn: Two independent paths:
1. admin_messages → pg_notify → PgChangeFeed → UnreadCountSynchronizer
   → /ws/unread (per-user badge)
2. Services → Redis PUBLISH → /ws/admin (admin activity feed)
"""
