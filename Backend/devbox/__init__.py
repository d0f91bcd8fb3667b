# devbox/__init__.py
"""
devbox - per-project sandbox orchestrator.
"""

__version__ = "1.0.0"
