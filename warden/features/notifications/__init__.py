"""
Notification bindings, commit-bound routing and delivery queues.
"""
