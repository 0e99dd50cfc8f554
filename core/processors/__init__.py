"""
Continuum Core Processors

Public exports for feature engineering processors.
"""

from core.processors.telemetry import TelemetryAggregator

__all__ = [
    "TelemetryAggregator",
]
