"""
Real-time notifications: in-process pub/sub rooms streamed to clients as Server-Sent Events.

Rooms:
- form-<id>: submission lifecycle events for one form
- user-<id>: events addressed to one user (e.g. an assignment)
"""
