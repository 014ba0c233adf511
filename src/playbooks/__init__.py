"""Idempotent bash playbooks run over SSH."""

from playbooks.dispatcher import (
    PlaybookDispatcher,
    PlaybookExecutionError,
    PlaybookInvocation,
    PlaybookOutputParseError,
    PlaybookResult,
)
from playbooks.registry import (
    PlaybookError,
    PlaybookNotFoundError,
    PlaybookSpec,
    PlaybookValidationError,
    get_playbook,
    list_playbooks,
    register_playbook,
)

__all__ = [
    'PlaybookDispatcher',
    'PlaybookError',
    'PlaybookExecutionError',
    'PlaybookInvocation',
    'PlaybookNotFoundError',
    'PlaybookOutputParseError',
    'PlaybookResult',
    'PlaybookSpec',
    'PlaybookValidationError',
    'get_playbook',
    'list_playbooks',
    'register_playbook',
]
