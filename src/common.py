"""Common utilities and types for fleet automation."""

import logging
import sys
from dataclasses import dataclass
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


@dataclass
class CommandResult:
    """Result of a remote command. A non-zero exit code is data, not an error."""
    stdout: str = ''
    stderr: str = ''
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def tail(self, limit: int = 500) -> str:
        """Return the last `limit` characters of combined output."""
        combined = '\n'.join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)
        if len(combined) <= limit:
            return combined
        return '...' + combined[-limit:]


def configure_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> None:
    """Configure root logging for fleet commands.

    Logs go to stderr so that structured output on stdout stays clean.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # paramiko is chatty at INFO (transport negotiation)
    logging.getLogger('paramiko').setLevel(logging.WARNING)


def format_duration(seconds: float) -> str:
    """Format a duration for log lines."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"
