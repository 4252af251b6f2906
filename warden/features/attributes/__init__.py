"""
Per-action attribute surfaces.
"""
