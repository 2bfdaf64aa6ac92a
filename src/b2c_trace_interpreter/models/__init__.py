"""Pydantic models for raw telemetry rows and reconstructed traces."""
