"""
Resource schemas and the catalog they are registered in.
"""
