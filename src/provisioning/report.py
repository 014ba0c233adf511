"""Provisioning run report."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class StateResult:
    """Outcome of one provisioning state."""
    name: str
    status: str  # 'passed', 'failed', 'compensated'
    message: str = ''
    duration: float = 0.0


@dataclass
class ProvisionReport:
    """Collects the states a provisioning run passed through."""
    server: str
    provider: str
    states: list[StateResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False
    cleanup_failures: list[str] = field(default_factory=list)

    def start(self):
        self.started_at = datetime.now()

    def pass_state(self, name: str, message: str = '', duration: float = 0.0):
        self.states.append(StateResult(name, 'passed', message, duration))

    def fail_state(self, name: str, message: str = '', duration: float = 0.0):
        self.states.append(StateResult(name, 'failed', message, duration))

    def compensated(self, message: str, duration: float = 0.0):
        self.states.append(StateResult('rolling_back', 'compensated', message, duration))

    def finish(self, success: bool):
        self.finished_at = datetime.now()
        self.success = success

    @property
    def state_names(self) -> list[str]:
        return [s.name for s in self.states]

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.states)

    def to_dict(self) -> dict:
        return {
            'server': self.server,
            'provider': self.provider,
            'success': self.success,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration': round(self.total_duration, 1),
            'states': [
                {
                    'name': s.name,
                    'status': s.status,
                    'message': s.message,
                    'duration': round(s.duration, 1),
                }
                for s in self.states
            ],
            'cleanup_failures': list(self.cleanup_failures),
        }
