"""OAuth credential fetching, injection and refresh."""

from toolbox_agent.credentials.broker import CredentialBroker
from toolbox_agent.credentials.injector import (
    CredentialInjector,
    InjectionResult,
    compute_refresh_delay,
    env_var_base,
)
from toolbox_agent.credentials.models import OAuthCredentialBundle, ProviderCredential
from toolbox_agent.credentials.scheduler import CredentialRefreshScheduler

__all__ = [
    "CredentialBroker",
    "CredentialInjector",
    "CredentialRefreshScheduler",
    "InjectionResult",
    "OAuthCredentialBundle",
    "ProviderCredential",
    "compute_refresh_delay",
    "env_var_base",
]
