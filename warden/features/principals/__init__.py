"""
Principals and action requests.
"""
