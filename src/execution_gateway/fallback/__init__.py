"""
Fallback chains with response caching and graceful degradation.

Main Components:
    - FallbackOrchestrator: Ordered candidates, each under its own retry budget
    - ChainOutcome: Successful value and the candidate index that produced it
    - degraded_response: Placeholder shaped after the operation id
"""

from execution_gateway.fallback.degraded import DEGRADED_SHAPES, degraded_response, degraded_shape
from execution_gateway.fallback.orchestrator import ChainOutcome, FallbackOrchestrator

__all__ = [
    "FallbackOrchestrator",
    "ChainOutcome",
    "degraded_response",
    "degraded_shape",
    "DEGRADED_SHAPES",
]
