"""
Policy definitions, inheritance and resolution by (role, resource type).
"""
