"""Exception taxonomy for key management."""


class BYOKError(Exception):
    """Base exception for key management errors."""

    pass


class ValidationError(BYOKError):
    """Raised when the caller supplied invalid input."""

    pass


class NotFoundError(BYOKError):
    """Raised when a referenced key record does not exist."""

    pass


class DecryptionError(BYOKError):
    """Raised when a ciphertext cannot be decrypted with the supplied key.

    Wrong keys and corrupted data are deliberately reported the same way.
    """

    pass


class StorageError(BYOKError):
    """Raised when the key store fails."""

    pass
