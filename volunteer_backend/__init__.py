"""
Backend package for the volunteer hub API.

This package provides a FastAPI application whose data access can run
against either a relational store (SQLAlchemy) or a document store
(MongoDB). The store is selected per request from the ``db_type`` cookie.
"""
