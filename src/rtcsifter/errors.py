"""Exception types raised by the RTCSifter engine."""


class RTCSifterError(Exception):
    """Base class for all engine errors."""


class EntryParseError(RTCSifterError, ValueError):
    """A dump line is not valid JSON or has neither accepted record shape."""


class MissingIdentityError(RTCSifterError):
    """A dump file never carried an identity record."""


class MissingConnectionInfoError(RTCSifterError):
    """A participant dump file never carried a connectionInfo record."""


class DumpsDirectoryNotFoundError(RTCSifterError, FileNotFoundError):
    """The dumps directory handed to the assembler does not exist."""
