"""Errors raised by the identity engine and the contact store."""


class IdentityError(Exception):
    """Base class for reconciliation failures."""


class MissingContactInfoError(IdentityError):
    """Neither an email nor a phone number was supplied."""

    def __init__(self, message: str = "Either email or phoneNumber must be provided"):
        super().__init__(message)


class StorageError(IdentityError):
    """The contact store could not complete a read or write."""


class StaleContactError(StorageError):
    """A contact changed between being read and being written."""
