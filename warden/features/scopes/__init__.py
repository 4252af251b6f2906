"""
Scope resolution into abstract filter descriptions.
"""
