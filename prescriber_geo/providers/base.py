from abc import ABC, abstractmethod
import os
from typing import Any, Self, Sequence
import requests
import structlog

from prescriber_geo.config import ProviderConfig
from prescriber_geo.errors import ConfigError, ProviderAuthError, ProviderError
from prescriber_geo.ratelimit import RateLimiter
from prescriber_geo.records import Coordinate, GeocodeQuery, PrescriberRecord

logger = structlog.get_logger()

USER_AGENT = "prescriber-geo/0.1 (county resolution for Part D prescribers)"


def make_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    return session


class Provider(ABC):
    """
    One external geocoding service.

    Subclasses implement ``_request`` (and ``_request_batch`` where the service
    takes several addresses per call). The public ``geocode`` methods charge the
    shared rate limiter and turn transport failures into ProviderError, so the
    escalation controller only ever sees candidates or ProviderError.
    """

    kind: str = ""
    supports_batch: bool = False

    def __init__(
        self: Self,
        config: ProviderConfig,
        session: requests.Session | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.check_config(config)
        self.config = config
        self.session = session or make_session()
        self.limiter = limiter or RateLimiter(config.name, config.requests_per_second, config.daily_cap)
        self.api_key = os.environ.get(config.api_key_env) if config.api_key_env else None
        self.disabled_reason: str | None = None

    @classmethod
    def check_config(cls, config: ProviderConfig) -> None:
        """Reject settings this service cannot honour. Raises ConfigError."""

    @property
    def name(self: Self) -> str:
        return self.config.name

    @property
    def disabled(self: Self) -> bool:
        return self.disabled_reason is not None

    def disable(self: Self, reason: str) -> None:
        if not self.disabled:
            logger.warning("provider_disabled", provider=self.name, reason=reason)
            self.disabled_reason = reason

    def query_for(self: Self, record: PrescriberRecord) -> GeocodeQuery:
        """Map record attributes onto this provider's request parameters."""
        return GeocodeQuery(
            provider=self.name,
            key=record.key,
            fields={param: str(getattr(record, attr)) for param, attr in self.config.field_map.items()},
        )

    def geocode(self: Self, query: GeocodeQuery, limit: int = 1) -> list[Coordinate]:
        """Ranked candidate coordinates for one address, best first. May be empty."""
        self.limiter.acquire()
        return self._guarded(self._request, query, limit)

    def geocode_batch(self: Self, queries: Sequence[GeocodeQuery]) -> list[list[Coordinate]]:
        """Candidates for each query, in input order."""
        if not self.supports_batch:
            return [self.geocode(query) for query in queries]
        self.limiter.acquire(len(queries))
        return self._guarded(self._request_batch, list(queries))

    def _guarded(self: Self, fn, *args):
        try:
            return fn(*args)
        except ProviderError:
            raise
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in (401, 403):
                raise ProviderAuthError(self.name, f"HTTP {status}") from e
            raise ProviderError(self.name, f"HTTP {status}") from e
        except requests.RequestException as e:
            raise ProviderError(self.name, f"{type(e).__name__}: {e}") from e
        except (KeyError, ValueError, TypeError, IndexError) as e:
            raise ProviderError(self.name, f"unexpected response: {e}") from e

    def _get_json(self: Self, url: str, params: dict[str, Any]) -> Any:
        response = self.session.get(url, params=params, timeout=self.config.timeout)
        response.raise_for_status()
        return response.json()

    @abstractmethod
    def _request(self: Self, query: GeocodeQuery, limit: int) -> list[Coordinate]:
        ...

    def _request_batch(self: Self, queries: list[GeocodeQuery]) -> list[list[Coordinate]]:
        raise NotImplementedError(f"{self.name} has no batch endpoint")

    def __repr__(self: Self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.config.priority})"


def build_providers(
    configs: Sequence[ProviderConfig],
    registry: dict[str, type[Provider]],
    session: requests.Session | None = None,
) -> list[Provider]:
    """
    Instantiate the provider chain in priority order.

    Providers that need a credential whose environment variable is unset are
    left out with a warning rather than failing the run.
    """
    session = session or make_session()
    providers: list[Provider] = []
    for config in sorted(configs, key=lambda c: c.priority):
        if config.kind not in registry:
            raise ConfigError(
                f"Unknown provider kind: {config.kind}. Available: {list(registry.keys())}"
            )
        if config.api_key_env and not os.environ.get(config.api_key_env):
            logger.warning("provider_skipped", provider=config.name, missing_env=config.api_key_env)
            continue
        providers.append(registry[config.kind](config, session=session))
    return providers
