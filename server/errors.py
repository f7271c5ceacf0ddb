"""
Server error types.

Every failure the relay reports to a client, or logs and carries on from,
is one of these.
"""

from common.constants import ErrorKinds


class ChatServerError(Exception):
    """Base class for relay errors."""
    kind = 'ServerError'


class ProtocolError(ChatServerError):
    """Malformed or unexpected envelope. The connection stays open."""
    kind = ErrorKinds.PROTOCOL


class IdentityError(ChatServerError):
    """Username claim rejected. The connection is closed with the policy code."""
    kind = 'IdentityError'


class InvalidNameError(IdentityError):
    kind = ErrorKinds.INVALID_NAME


class NameTakenError(IdentityError):
    kind = ErrorKinds.NAME_TAKEN


class NameReservedError(IdentityError):
    kind = ErrorKinds.NAME_RESERVED


class CommandError(ChatServerError):
    """Bad command arguments or unknown command. The connection stays open."""
    kind = ErrorKinds.COMMAND


class PersistenceError(ChatServerError):
    """Durable store read or write failure."""
    kind = 'PersistenceError'


class AiError(ChatServerError):
    """Generation or classification call failed."""
    kind = 'AiError'


class TransportError(ChatServerError):
    """Sending to a single peer failed."""
    kind = 'TransportError'
