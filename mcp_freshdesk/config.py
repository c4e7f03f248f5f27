"""Configuration for the Freshdesk client."""

import os
from collections.abc import Mapping
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import ConfigurationError

DEFAULT_AGENT_CACHE_TTL = 300.0  # 5 minutes


class FreshdeskConfig(BaseModel):
    """Connection settings for one Freshdesk account."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    domain: str = Field(min_length=1, description="Account subdomain, e.g. 'acme' for acme.freshdesk.com")
    api_key: str = Field(min_length=1, repr=False)
    agent_cache_ttl: float = Field(default=DEFAULT_AGENT_CACHE_TTL, gt=0)

    @field_validator("domain")
    @classmethod
    def reduce_to_subdomain(cls, v: str) -> str:
        """Accept 'acme', 'acme.freshdesk.com' or 'https://acme.freshdesk.com/'."""
        host = urlparse(v).netloc if "://" in v else v.strip("/")
        subdomain = host.removesuffix(".freshdesk.com")
        if not subdomain:
            raise ValueError(f"no account subdomain in {v!r}")
        return subdomain

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}.freshdesk.com/api/v2"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "FreshdeskConfig":
        """Build the configuration from environment variables.

        Raises:
            ConfigurationError: If FRESHDESK_DOMAIN or FRESHDESK_API_KEY is missing
                or a value is invalid.
        """
        env = os.environ if environ is None else environ

        api_key = env.get("FRESHDESK_API_KEY", "").strip()
        if not api_key:
            raise ConfigurationError(
                "FRESHDESK_API_KEY environment variable is required. Set it in your MCP server configuration."
            )

        domain = env.get("FRESHDESK_DOMAIN", "").strip()
        if not domain:
            raise ConfigurationError(
                "FRESHDESK_DOMAIN environment variable is required. "
                "Set it to your Freshdesk subdomain (e.g., 'mycompany' for mycompany.freshdesk.com)."
            )

        ttl = env.get("FRESHDESK_AGENT_CACHE_TTL") or DEFAULT_AGENT_CACHE_TTL
        try:
            return cls(domain=domain, api_key=api_key, agent_cache_ttl=ttl)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Freshdesk configuration: {e}") from e
