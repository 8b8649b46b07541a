"""Pydantic schemas for submissions, templates and control requests."""
