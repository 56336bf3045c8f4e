"""Logging, OpenTelemetry tracing and Prometheus metrics helpers."""
