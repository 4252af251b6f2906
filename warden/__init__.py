"""
Warden: declarative authorization and API-surface derivation.

Given a principal and a resource type, decides which actions are
permitted, which records are visible, which fields may be read or
written, and which notifications an action triggers.
"""
