# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
Define the exceptions raised by the registry trust metadata subsystem.
The names chosen for exception classes should end in 'Error' except where
there is a good reason not to, and provide that reason in those cases.
"""

from typing import Optional

from securesystemslib.exceptions import StorageError  # noqa: F401


class RepositoryError(Exception):
    """Base class of all errors raised by regtuf.

    None of these errors is fatal to the host process: the caller (e.g. an
    image push path) is expected to reject the operation it was serving.
    """


class ConfigurationError(RepositoryError):
    """Invalid configuration or the repository directories cannot be made."""


class NotFoundError(RepositoryError):
    """An operation referenced an unknown target, delegation, role or file."""


class UninitializedError(RepositoryError):
    """The operation needs metadata that has not been initialized or loaded."""


class IntegrityError(RepositoryError):
    """Content does not match the trusted metadata describing it."""


class LengthOrHashMismatchError(IntegrityError):
    """An error while checking the length and hash values of an object."""


class PersistenceError(RepositoryError):
    """Metadata, key or target content could not be read or written.

    Note that in-memory state of tiers written earlier in the same operation
    is not rolled back.
    """


class SigningError(RepositoryError):
    """A single key failed to produce a signature.

    Args:
        keyid: Identifier of the key that failed.
    """

    def __init__(self, message: str, keyid: Optional[str] = None):
        super().__init__(message)
        self.keyid = keyid


class TrustAnchorError(RepositoryError):
    """Root metadata is missing, unparseable or not signed by its own keys."""


class UnsignedMetadataError(RepositoryError):
    """An error about metadata object with insufficient threshold of
    signatures.
    """


class ThresholdNotMetError(UnsignedMetadataError):
    """Metadata was about to be written without a threshold of valid
    signatures.
    """


class BadVersionNumberError(RepositoryError):
    """An error for metadata that contains an invalid version number."""
