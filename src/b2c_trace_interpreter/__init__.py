"""Trace reconstruction for identity-provider journey telemetry.

Having this file allows relative imports (e.g. `from .models import ...`) and
the CLI usage pattern `python -m b2c_trace_interpreter flows export.json`.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
