"""
Application package initializer.

This package contains the main entrypoint for the API and its
submodules: ``core`` (configuration, logging, database, errors),
``schemas`` (request/response models), ``services`` (lending rules and
queries) and ``api`` (HTTP routes).
"""
