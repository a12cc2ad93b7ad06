"""
Per-service circuit breaking.

Main Components:
    - CircuitBreaker: Lazily created CLOSED/OPEN/HALF_OPEN state per service id
    - CircuitStatus: Read-only snapshot of one service's circuit
"""

from execution_gateway.circuit.breaker import CircuitBreaker, CircuitStatus

__all__ = ["CircuitBreaker", "CircuitStatus"]
