class LangpadError(Exception):
    pass

class NotFoundError(LangpadError):
    """Raised when a flow, step or action cannot be resolved at call time."""
    pass

class ExternalServiceError(LangpadError):
    """Raised when the chat-completion service rejects a request."""
    pass

class ProviderError(ExternalServiceError):
    pass

class AuthenticationError(ProviderError):
    """Raised when the API credential is rejected."""
    pass

class ConfigurationError(LangpadError):
    pass
