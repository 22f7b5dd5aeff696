import logging
from dataclasses import dataclass
from typing import Dict, Optional

from board_starter_svc.config import AuthProvider, Settings

DISPLAY_NAMES = {
    AuthProvider.GOOGLE: "Google",
    AuthProvider.FACEBOOK: "Facebook",
}


@dataclass(frozen=True)
class ExternalProvider:
    """
    Credentials for an external identity provider the service accepts logins from.
    """
    name: str
    display_name: str
    client_id: str
    client_secret: str


def _credentials(settings: Settings, provider: AuthProvider):
    if provider == AuthProvider.GOOGLE:
        return settings.google_client_id, settings.google_client_secret
    return settings.facebook_app_id, settings.facebook_app_secret


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def enabled_providers(settings: Settings) -> Dict[str, ExternalProvider]:
    """
    Resolve the requested providers to those with both a client id and a secret.

    A provider missing either value is left out without failing startup.
    """
    providers = {}
    for provider in settings.requested_providers():
        client_id, client_secret = _credentials(settings, provider)
        if not (_present(client_id) and _present(client_secret)):
            logging.debug("External login via %s disabled: client id or secret missing", provider.value)
            continue
        providers[provider.value] = ExternalProvider(
            name=provider.value,
            display_name=DISPLAY_NAMES[provider],
            client_id=client_id.strip(),
            client_secret=client_secret.strip(),
        )
    return providers
