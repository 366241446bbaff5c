class WebVaultError(Exception):
    """Base class for errors raised by the content store service."""


class InputValidationError(WebVaultError, ValueError):
    """Request shape is unacceptable; nothing was dispatched."""


class StoreError(WebVaultError):
    """A tenant store could not be opened, migrated or written."""

    def __init__(self, message: str, tenant_id: str | None = None):
        super().__init__(message)
        self.tenant_id = tenant_id
