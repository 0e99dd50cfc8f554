"""
Continuum Core

Continuous-authentication engine: telemetry aggregation, baseline tracking,
anomaly scoring, trust state and biometric re-verification.

Entry point: core.orchestrator.ContinuumOrchestrator
"""

__version__ = "1.0.0"
