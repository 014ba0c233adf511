"""Remote execution over SSH."""

from remote.channel import (
    AuthenticationError,
    CommandExecutionError,
    CommandTimeoutError,
    RemoteChannel,
    RemoteConnectionError,
    RemoteError,
    SSHTarget,
    TransferError,
)

__all__ = [
    'AuthenticationError',
    'CommandExecutionError',
    'CommandTimeoutError',
    'RemoteChannel',
    'RemoteConnectionError',
    'RemoteError',
    'SSHTarget',
    'TransferError',
]
