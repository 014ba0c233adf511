"""Playbook registry.

A playbook is a bash script under playbooks/scripts/ plus the list of
FLEET_* variables it cannot run without.
"""

from dataclasses import dataclass, field
from pathlib import Path

SCRIPTS_DIR = Path(__file__).parent / 'scripts'
HELPERS_SCRIPT = SCRIPTS_DIR / 'helpers.sh'


class PlaybookError(Exception):
    """Base exception for playbook errors."""

    def __init__(self, code: str, message: str, playbook: str = ''):
        self.code = code
        self.message = message
        self.playbook = playbook
        super().__init__(f"{code}: {message}")


class PlaybookNotFoundError(PlaybookError):
    """No playbook registered under this name."""

    def __init__(self, name: str, available: list[str]):
        self.available = available
        super().__init__("E200", f"Unknown playbook: {name}. Available: {available}", name)


class PlaybookValidationError(PlaybookError):
    """Required parameters missing. Raised before any remote call."""

    def __init__(self, playbook: str, missing: list[str]):
        self.missing = missing
        super().__init__("E201", f"Playbook '{playbook}' missing required variables: {', '.join(missing)}",
                         playbook)


@dataclass(frozen=True)
class PlaybookSpec:
    """A registered playbook."""
    name: str
    description: str = ''
    required: tuple[str, ...] = ()
    defaults: dict = field(default_factory=dict, hash=False)
    script: Path = None  # type: ignore[assignment]

    @property
    def script_path(self) -> Path:
        return self.script or SCRIPTS_DIR / f'{self.name}.sh'

    def read_script(self) -> str:
        return self.script_path.read_text(encoding='utf-8')


_playbooks: dict[str, PlaybookSpec] = {}


def register_playbook(spec: PlaybookSpec) -> PlaybookSpec:
    """Register a playbook, replacing any previous one with the same name."""
    _playbooks[spec.name] = spec
    return spec


def get_playbook(name: str) -> PlaybookSpec:
    """Get a playbook by name."""
    if name not in _playbooks:
        raise PlaybookNotFoundError(name, list_playbooks())
    return _playbooks[name]


def list_playbooks() -> list[str]:
    """List registered playbook names."""
    return sorted(_playbooks.keys())


register_playbook(PlaybookSpec(
    name='server-info',
    description='Detect distro, permissions, listening ports and firewall state',
))

register_playbook(PlaybookSpec(
    name='server-firewall',
    description='Reset UFW and allow the given TCP ports',
    required=('FLEET_PERMS', 'FLEET_SSH_PORT', 'FLEET_ALLOWED_PORTS'),
    defaults={'FLEET_MODE': 'apply'},
))
