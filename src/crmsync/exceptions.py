"""Exception hierarchy for the email sync pipeline."""


class CrmSyncError(Exception):
    """Base exception for all crmsync errors."""


class AuthorizationError(CrmSyncError):
    """No authenticated caller; the run is rejected before any account is touched."""


# Account level
class CredentialRefreshError(CrmSyncError):
    """Access token could not be refreshed for one account."""

    def __init__(self, account_email: str, reason: str):
        super().__init__(f"Token refresh failed for {account_email}: {reason}")
        self.account_email = account_email
        self.reason = reason


class MessageFetchError(CrmSyncError):
    """Listing messages for an account failed."""


# Message level
class SummarizationServiceError(CrmSyncError):
    """The summarization service could not be reached or answered with an error."""
