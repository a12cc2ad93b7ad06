"""
Retry executor with exponential backoff and jitter.

Each candidate operation runs under its own retry budget. Failures are
classified by ``execution_gateway.errors.classify``; only retryable kinds
are retried, and a provider ``Retry-After`` hint overrides the backoff.

Main Components:
    - RetryExecutor: Stateless retry loop (safe to share across tasks)
    - delay_schedule: Jitter-free delay sequence for a policy

Usage:
    >>> from execution_gateway.retry import RetryExecutor
    >>> executor = RetryExecutor(policy)
    >>> result = await executor.execute_with_retry(operation, operation_id="analysis#0")
"""

from execution_gateway.retry.executor import JITTER_RATIO, RetryExecutor, delay_schedule

__all__ = ["RetryExecutor", "delay_schedule", "JITTER_RATIO"]
