"""Playbook dispatch protocol.

A dispatch composes one bash script from:
1. `export KEY='value'` lines for every parameter, plus FLEET_OUTPUT_FILE
2. helpers.sh
3. the playbook body

It runs the script through the remote channel, then reads the YAML document
the playbook wrote to FLEET_OUTPUT_FILE with a second command that also
removes the file. The document must be a mapping with a `status` key.
"""

import logging
import re
import secrets
import shlex
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from common import CommandResult
from inventory.models import ServerRecord
from playbooks.registry import (
    HELPERS_SCRIPT,
    PlaybookError,
    PlaybookSpec,
    PlaybookValidationError,
    get_playbook,
)
from remote.channel import RemoteChannel

logger = logging.getLogger(__name__)

OUTPUT_FILE_VAR = 'FLEET_OUTPUT_FILE'
READ_OUTPUT_TIMEOUT = 30.0
ERROR_TAIL_CHARS = 500
RAW_SNIPPET_CHARS = 500

_VAR_NAME_RE = re.compile(r'^[A-Z_][A-Z0-9_]*$')

_MISSING = object()


class PlaybookExecutionError(PlaybookError):
    """Playbook exited non-zero or reported a non-success status."""

    def __init__(self, playbook: str, message: str, stdout: str = '', stderr: str = '',
                 exit_code: Optional[int] = None):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__("E202", f"Playbook '{playbook}' failed: {message}", playbook)


class PlaybookOutputParseError(PlaybookError):
    """Output document missing, not YAML, not a mapping, or lacking a key."""

    def __init__(self, playbook: str, message: str, raw: str = ''):
        self.raw = raw
        snippet = raw[:RAW_SNIPPET_CHARS]
        detail = f"\n--- output ---\n{snippet}" if snippet else ''
        super().__init__("E203", f"Playbook '{playbook}' output invalid: {message}{detail}", playbook)


@dataclass
class PlaybookResult:
    """Parsed playbook output document."""
    playbook: str
    status: str
    data: dict = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def require(self, key: str, expected_type: Optional[type] = None) -> Any:
        """Return data[key], checking presence and type.

        Raises:
            PlaybookOutputParseError: Key absent or of the wrong type
        """
        value = self.data.get(key, _MISSING)
        if value is _MISSING:
            raise PlaybookOutputParseError(self.playbook, f"missing key '{key}'")
        if expected_type is not None and not isinstance(value, expected_type):
            raise PlaybookOutputParseError(
                self.playbook,
                f"key '{key}' should be {expected_type.__name__}, got {type(value).__name__}")
        return value

    def to_dict(self) -> dict:
        return dict(self.data)


@dataclass
class PlaybookInvocation:
    """One playbook run against one server."""
    playbook: str
    server: str
    params: dict[str, str]
    output_file: str
    script: str = ''
    result: Optional[PlaybookResult] = None
    error: Optional[PlaybookError] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.error is None


def make_output_file() -> str:
    return f"/tmp/fleet-output-{int(time.time())}-{secrets.token_hex(8)}.yml"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value)
    return '' if value is None else str(value)


def build_exports(params: dict[str, str]) -> str:
    """Render parameters as shell export lines with quoted values."""
    lines = []
    for key, value in params.items():
        if not _VAR_NAME_RE.match(key):
            raise ValueError(f"Invalid playbook variable name: {key!r}")
        lines.append(f"export {key}={shlex.quote(value)}")
    return '\n'.join(lines)


class PlaybookDispatcher:
    """Run registered playbooks on servers and parse their output."""

    def __init__(self, channel: RemoteChannel, timeout: Optional[float] = None):
        self.channel = channel
        self.timeout = timeout
        self.invocations: list[PlaybookInvocation] = []

    def prepare(self, server: ServerRecord, playbook_name: str,
                params: Optional[dict] = None) -> PlaybookInvocation:
        """Validate parameters and compose the script. No remote calls.

        Raises:
            PlaybookNotFoundError: Unknown playbook
            PlaybookValidationError: Required variables missing or empty
        """
        spec = get_playbook(playbook_name)
        merged = {k: _stringify(v) for k, v in {**spec.defaults, **(params or {})}.items()}

        missing = [key for key in spec.required if not merged.get(key)]
        if missing:
            raise PlaybookValidationError(spec.name, missing)

        output_file = make_output_file()
        merged[OUTPUT_FILE_VAR] = output_file
        invocation = PlaybookInvocation(
            playbook=spec.name,
            server=server.name,
            params=merged,
            output_file=output_file,
        )
        invocation.script = self._compose(spec, merged)
        return invocation

    def dispatch(self, server: ServerRecord, playbook_name: str,
                 params: Optional[dict] = None) -> PlaybookResult:
        """Run a playbook and return its parsed output.

        Raises:
            PlaybookValidationError: Before any remote call
            PlaybookExecutionError: Non-zero exit or non-success status
            PlaybookOutputParseError: Output document unusable
            RemoteError: Channel failures propagate unchanged
        """
        invocation = self.prepare(server, playbook_name, params)
        self.invocations.append(invocation)
        target = server.ssh_target()

        logger.info(f"[{server.name}] Running playbook {invocation.playbook}")
        try:
            run = self.channel.execute_script(target, invocation.script, timeout=self.timeout)
            if not run.succeeded:
                raise self._execution_error(invocation.playbook, run)

            read_cmd = (f"cat {shlex.quote(invocation.output_file)} 2>/dev/null"
                        f" && rm -f {shlex.quote(invocation.output_file)}")
            output = self.channel.execute_command(target, read_cmd, timeout=READ_OUTPUT_TIMEOUT)
            invocation.result = self.parse_output(invocation.playbook, output.stdout)
        except PlaybookError as e:
            invocation.error = e
            raise

        logger.debug(f"[{server.name}] Playbook {invocation.playbook} returned {sorted(invocation.result.data)}")
        return invocation.result

    @staticmethod
    def parse_output(playbook: str, raw: str) -> PlaybookResult:
        """Parse an output document.

        Raises:
            PlaybookOutputParseError: Empty, invalid YAML, not a mapping, or no status
            PlaybookExecutionError: status is not 'success'
        """
        if not raw.strip():
            raise PlaybookOutputParseError(playbook, "no output document was written")
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise PlaybookOutputParseError(playbook, f"invalid YAML: {e}", raw) from e
        if not isinstance(data, dict):
            raise PlaybookOutputParseError(playbook, "document is not a mapping", raw)
        if 'status' not in data:
            raise PlaybookOutputParseError(playbook, "missing key 'status'", raw)

        status = str(data['status'])
        if status != 'success':
            detail = data.get('error') or f"status '{status}'"
            raise PlaybookExecutionError(playbook, str(detail))
        return PlaybookResult(playbook=playbook, status=status, data=data)

    @staticmethod
    def _compose(spec: PlaybookSpec, params: dict[str, str]) -> str:
        helpers = HELPERS_SCRIPT.read_text(encoding='utf-8')
        return '\n'.join([build_exports(params), '', helpers, '', spec.read_script()])

    @staticmethod
    def _execution_error(playbook: str, run: CommandResult) -> PlaybookExecutionError:
        tail = run.tail(ERROR_TAIL_CHARS) or '(no output)'
        return PlaybookExecutionError(
            playbook,
            f"exit code {run.exit_code}\n{tail}",
            stdout=run.stdout,
            stderr=run.stderr,
            exit_code=run.exit_code,
        )
