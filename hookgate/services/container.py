"""
Gateway service container.

Every piece of shared, mutable gateway state (registries, rate-limiter
windows, circuit breakers, the outbound HTTP client) is owned by one
GatewayServices instance, built once in the application lifespan and handed
to the pipeline components by reference. Tests build their own instance.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.config import Settings, get_settings
from hookgate.database import async_session_factory
from hookgate.services.circuit_breaker import CircuitBreaker
from hookgate.services.endpoints import EndpointRegistry
from hookgate.services.handler_registry import HandlerRegistry
from hookgate.services.rate_limiter import RateLimiter
from hookgate.verifiers.registry import VerifierRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    settings: Settings
    session_factory: Callable[[], AsyncSession]
    verifiers: VerifierRegistry
    handlers: HandlerRegistry = field(default_factory=HandlerRegistry)
    endpoints: EndpointRegistry = field(default_factory=EndpointRegistry)
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    circuit_breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    http_client: Optional[httpx.AsyncClient] = None

    def get_http_client(self) -> httpx.AsyncClient:
        """Shared client for outgoing delivery, created on first use."""
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.delivery_read_timeout_seconds,
                    connect=self.settings.delivery_connect_timeout_seconds,
                ),
                follow_redirects=False,
            )
        return self.http_client

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None


def build_services(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> GatewayServices:
    settings = settings or get_settings()
    services = GatewayServices(
        settings=settings,
        session_factory=session_factory or async_session_factory,
        verifiers=build_default_registry(settings),
        http_client=http_client,
    )
    logger.info("Gateway services built (verifiers: %s)", ", ".join(services.verifiers.names()))
    return services
