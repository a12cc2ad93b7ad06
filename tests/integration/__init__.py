"""
Integration tests for the Execution Gateway.

Test components together through the full gateway stack:
- Provider calls over real httpx clients (MockTransport, marked with @pytest.mark.integration)
- Classification of genuine HTTP status and transport errors
- Retry, fallback, caching and circuit breaking end to end
"""
