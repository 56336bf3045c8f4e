"""Ports: protocols for external business services and shared stores."""
