"""Study session inspector: telemetry reconciliation and admin overrides."""

__version__ = "0.1.0"
