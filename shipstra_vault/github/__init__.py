"""GitHub App integration: configuration, auth, REST client and webhooks."""

from .config import GitHubAppConfig, normalize_private_key
from .api import GitHubAPI
from .app_auth import GitHubAppAuth
from .webhooks import WebhookEvent, WebhookVerifier, verify_signature

__all__ = [
    "GitHubAppConfig",
    "normalize_private_key",
    "GitHubAPI",
    "GitHubAppAuth",
    "WebhookEvent",
    "WebhookVerifier",
    "verify_signature",
]
