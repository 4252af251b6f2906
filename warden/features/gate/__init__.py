"""
Capability checks and their audit trail.
"""
