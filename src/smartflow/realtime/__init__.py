"""Real-time delivery — per-user Server-Sent Events sessions.

1. Services → PushRegistry.publish (in-process fan-out to open sessions)
2. Session queue → SSE generator → browser EventSource

Push is best-effort: nothing is queued for users who are not connected.
The notifications table stays the source of truth; clients catch up
with GET /notifications.
"""
