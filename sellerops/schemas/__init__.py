"""Pydantic request/response schemas for the operator API."""
