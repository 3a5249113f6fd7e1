"""
HTTP layer for forget-spine.

Quick start::

    from forget_spine.api import create_app

    app = create_app()  # ready for uvicorn
"""

from forget_spine.api.app import create_app

__all__ = ["create_app"]
