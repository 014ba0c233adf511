"""Input validation for server and site records.

Each check returns (ok, message) so callers can collect errors before
touching the network.
"""

import ipaddress
import re
from pathlib import Path

# RFC 1123 hostname labels
_LABEL_RE = re.compile(r'^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$')
_SERVER_NAME_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


def validate_server_name(name: str) -> tuple[bool, str]:
    """Check a server name is non-empty and shell/YAML friendly."""
    if not name or not name.strip():
        return False, "Server name cannot be empty"
    if not _SERVER_NAME_RE.match(name):
        return False, f"Invalid server name '{name}': use letters, digits, '.', '_' or '-'"
    return True, ''


def is_valid_ip(value: str) -> bool:
    """Check if value is an IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_valid_hostname(value: str) -> bool:
    """Check if value is a DNS hostname."""
    if not value or len(value) > 253:
        return False
    labels = value.rstrip('.').split('.')
    # All-numeric dotted values are malformed IPs, not hostnames
    if all(label.isdigit() for label in labels):
        return False
    return all(_LABEL_RE.match(label) for label in labels)


def validate_host(host: str) -> tuple[bool, str]:
    """Check a host is a valid IP address or hostname."""
    if not host:
        return False, "Host cannot be empty"
    if is_valid_ip(host) or is_valid_hostname(host):
        return True, ''
    return False, f"Invalid host '{host}': must be an IP address or hostname"


def validate_port(port) -> tuple[bool, str]:
    """Check a port is an integer in 1-65535."""
    try:
        value = int(port)
    except (TypeError, ValueError):
        return False, f"Invalid port '{port}': must be a number"
    if isinstance(port, bool) or not 1 <= value <= 65535:
        return False, f"Invalid port '{port}': must be between 1 and 65535"
    return True, ''


def validate_key_path(key_path: str) -> tuple[bool, str]:
    """Check a private key file exists."""
    if not key_path:
        return False, "Private key path cannot be empty"
    path = Path(key_path).expanduser()
    if not path.is_file():
        return False, f"Private key not found: {path}"
    return True, ''


def validate_server_fields(name: str, host: str, port, key_path: str) -> list[str]:
    """Run all server field checks.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    for ok, message in (validate_server_name(name), validate_host(host),
                        validate_port(port), validate_key_path(key_path)):
        if not ok:
            errors.append(message)
    return errors
