"""Application layer: ports, DTOs and pure services."""
