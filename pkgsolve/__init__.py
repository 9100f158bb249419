"""
pkgsolve - Package dependency resolution and conflict explanation

A libsolv-driven resolution engine, featuring:
- Pool of prioritized repositories loaded from repodata or package lists
- Translation of user requests into solver jobs
- Compact conflict trees explaining unsatisfiable requests
"""

__version__ = "0.3.0"
