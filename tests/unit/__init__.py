"""
Unit tests for the Execution Gateway.

Test individual components in isolation:
- Error classifier (status codes, payloads, transport errors)
- Retry executor (backoff schedule, deadlines, cancellation)
- Circuit breaker (state machine, reset, concurrency)
- Response cache and fallback orchestrator
- Usage tracker, pricing and threshold alerts
- Usage stores and background flushing
- Settings and the Gateway facade
"""
