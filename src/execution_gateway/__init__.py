"""
Resilient Execution Gateway for external AI and social-platform providers.

Wraps every call to an unreliable provider with one protective layer:
- Error classification (retryable vs permanent, with remediation hints)
- Retry with exponential backoff and jitter
- Per-service circuit breaking
- Ordered fallback chains with response caching and graceful degradation
- Usage/cost accounting gated by daily, monthly and per-request ceilings

Architecture: asyncio gateway + pydantic configuration + structlog events
+ Prometheus metrics + pluggable usage ledger storage (memory/file/Redis)
"""

from execution_gateway.gateway import Gateway
from execution_gateway.models.result_models import GatewayResult

__version__ = "0.1.0"

__all__ = ["Gateway", "GatewayResult", "__version__"]
