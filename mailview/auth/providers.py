"""
Static email provider table for the login flow.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from mailview.config import DEFAULT_IMAP_PORT


CUSTOM_PROVIDER = "Custom"


@dataclass(frozen=True, slots=True)
class EmailProvider:
    """A selectable provider on the login screen."""
    name: str
    imap_host: str = ""
    imap_port: int = DEFAULT_IMAP_PORT
    requires_oauth: bool = False

    @property
    def endpoint(self) -> str:
        """IMAP endpoint as ``host:port``; empty for the custom provider."""
        if not self.imap_host:
            return ""
        return f"{self.imap_host}:{self.imap_port}"

    @property
    def is_custom(self) -> bool:
        return self.name == CUSTOM_PROVIDER


EMAIL_PROVIDERS: List[EmailProvider] = [
    EmailProvider("Gmail", "imap.gmail.com", requires_oauth=True),
    EmailProvider("Outlook.com", "outlook.office365.com", requires_oauth=True),
    EmailProvider("Yahoo", "imap.mail.yahoo.com"),
    EmailProvider("iCloud", "imap.mail.me.com"),
    EmailProvider("AOL", "imap.aol.com"),
    EmailProvider(CUSTOM_PROVIDER),
]

_PROVIDERS_BY_NAME: Dict[str, EmailProvider] = {p.name: p for p in EMAIL_PROVIDERS}


def get_provider(name: str) -> Optional[EmailProvider]:
    """Look up a provider by its display name."""
    return _PROVIDERS_BY_NAME.get(name)
