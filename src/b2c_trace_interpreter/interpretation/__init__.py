"""Trace interpretation package: clip state machine and its helpers."""
