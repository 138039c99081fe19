"""
Process-level error hierarchy for the GMSA webhook.

These exceptions cover failures outside of admission decisions: invalid
configuration and TLS certificate handling. They carry a category and a
hint at what an operator should do to resolve them.
"""


class WebhookError(Exception):
    """
    Base error class for all webhook process exceptions.

    Provides categorization and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize webhook error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, certificate)
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ConfigurationError(WebhookError):
    """Error in webhook configuration."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="configuration",
            user_action=user_action or "Review and correct configuration",
        )


class CertificateLoadError(WebhookError):
    """The serving certificate or key could not be loaded."""

    def __init__(
        self, cert_path: str, key_path: str, cause: Exception | None = None
    ):
        message = f"unable to load certificate {cert_path} with key {key_path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            message=message,
            category="certificate",
            user_action="Check that both files exist, are readable PEM and form a matching key pair",
            cause=cause,
        )
        self.cert_path = cert_path
        self.key_path = key_path


class CertificateWatchError(WebhookError):
    """Watching the certificate files for changes could not be set up."""

    def __init__(self, path: str, cause: Exception | None = None):
        message = f"unable to watch certificate file {path}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            message=message,
            category="certificate",
            user_action="Check that the certificate and key paths exist",
            cause=cause,
        )
        self.path = path
