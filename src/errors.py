"""
Provider errors.

Every failure surfaced by a connector or an external client is one of these.
The message carries the operation that failed; the underlying transport or
store error is chained as ``__cause__``.
"""


class ProviderError(Exception):
    """Base class for all reconciliation errors."""

    pass


class ConfigNotFound(ProviderError):
    """The ProviderConfig referenced by a managed resource does not exist."""

    pass


class CredentialSourceUnavailable(ProviderError):
    """A credential source could not be read or held no usable token."""

    pass


class CredentialResolutionFailed(ProviderError):
    """Credentials for a ProviderConfig could not be resolved."""

    pass


class ConnectionFailed(ProviderError):
    """A connection to Central could not be established."""

    pass


class ObserveFailed(ProviderError):
    pass


class CreateFailed(ProviderError):
    pass


class UpdateFailed(ProviderError):
    pass


class DeleteFailed(ProviderError):
    pass


class NotThisKind(ProviderError):
    """
    A resource of the wrong kind was handed to a reconciler.

    This is a programming error in the composition root and is never retried.
    """

    pass
