"""
Service layer abstraction.

Each service encapsulates business logic for a domain and talks to the
database through the ``Database`` handle it is constructed with, so API
handlers never issue SQL themselves.  The lending rules live in
``loan_policy`` and are free of I/O.
"""
