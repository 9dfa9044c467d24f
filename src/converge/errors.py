"""Custom exceptions for the convergence engine."""


class ConvergeError(Exception):
    """Base exception for this package."""


class MissingDependencyError(ConvergeError):
    """Raised when an optional dependency is required but not installed."""


class ResourceInvalidError(ConvergeError):
    """Raised when resource properties fail structural or semantic validation."""


class ResourceNameRequiredError(ResourceInvalidError):
    """Raised when a resource declaration has no name."""


class ResourceEnsureRequiredError(ResourceInvalidError):
    """Raised when a resource declaration has no ensure value."""


class UnknownResourceTypeError(ResourceInvalidError):
    """Raised when a declaration names a resource type that is not known."""


class TemplateResolutionError(ResourceInvalidError):
    """Raised when a templated property value cannot be resolved."""


class ProviderError(ConvergeError):
    """Base exception for provider selection failures."""


class ProviderNotFoundError(ProviderError):
    """Raised when an explicitly requested provider is not registered."""


class ProviderNotManageableError(ProviderError):
    """Raised when an explicitly requested provider cannot manage the host."""


class NoSuitableProviderError(ProviderError):
    """Raised when no registered provider can manage a resource."""


class DuplicateProviderError(ProviderError):
    """Raised when a provider is registered twice for the same type."""


class DesiredStateFailedError(ConvergeError):
    """Raised when a mutation completed but the resource did not reach its desired state."""


class CommandExecutionError(ConvergeError):
    """Raised when an external command could not be started."""


class CommandTimeoutError(CommandExecutionError):
    """Raised when an external command exceeds its timeout."""


class SessionError(ConvergeError):
    """Raised when the session store cannot record or report events."""


class ProtocolError(ConvergeError):
    """Raised when an API request payload is malformed."""


class ManifestError(ConvergeError):
    """Raised when a manifest document cannot be read or has the wrong shape."""
