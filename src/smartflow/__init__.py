"""SmartFlow — in-app notifications for the project/task tracker.

Persists per-user notifications with a bounded history, fans them out
to recipients, and pushes new ones to connected browsers over
Server-Sent Events.
"""

__version__ = "0.1.0"
