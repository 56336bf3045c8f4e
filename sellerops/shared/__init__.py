"""Shared enums, utilities and telemetry helpers."""
