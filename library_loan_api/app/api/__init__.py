"""
HTTP API package.

``router.py`` aggregates the domain routers defined in ``endpoints``;
the application mounts it under ``/api``.
"""
