from .auth import SCOPES, ConnectedMailbox, GmailConnectFlow, TokenLifecycleManager
from .source import GmailMessageFetcher, build_gmail_service

__all__ = [
    "SCOPES",
    "ConnectedMailbox",
    "GmailConnectFlow",
    "TokenLifecycleManager",
    "GmailMessageFetcher",
    "build_gmail_service",
]
