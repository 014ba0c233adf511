#!/usr/bin/env python3
"""Tests for common.py - shared utilities.

Tests verify:
1. CommandResult success flag and output tail
2. Logging configuration
3. Duration formatting
"""

import io
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import CommandResult, configure_logging, format_duration


class TestCommandResult:
    """Test CommandResult."""

    def test_zero_exit_succeeded(self):
        """Exit code 0 should be success."""
        assert CommandResult(stdout='ok', exit_code=0).succeeded is True

    def test_nonzero_exit_not_succeeded(self):
        """Non-zero exit code is data, reported via succeeded."""
        assert CommandResult(exit_code=2).succeeded is False

    def test_tail_combines_stdout_and_stderr(self):
        """Tail should include both streams."""
        result = CommandResult(stdout='out\n', stderr='err\n', exit_code=1)
        assert result.tail() == 'out\nerr'

    def test_tail_truncates_from_the_end(self):
        """Long output should keep only the last characters."""
        result = CommandResult(stdout='a' * 100 + 'END', exit_code=1)
        tail = result.tail(10)
        assert tail.startswith('...')
        assert tail.endswith('END')
        assert len(tail) == 13

    def test_tail_empty(self):
        """No output should give empty tail."""
        assert CommandResult(exit_code=1).tail() == ''


class TestConfigureLogging:
    """Test configure_logging."""

    def teardown_method(self):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)

    def test_default_level_info(self):
        """Non-verbose should log at INFO."""
        configure_logging(verbose=False, stream=io.StringIO())
        assert logging.getLogger().level == logging.INFO

    def test_verbose_enables_debug(self):
        """Verbose should log at DEBUG."""
        configure_logging(verbose=True, stream=io.StringIO())
        assert logging.getLogger().level == logging.DEBUG

    def test_format_includes_level(self):
        """Log lines should use the timestamp [LEVEL] message format."""
        stream = io.StringIO()
        configure_logging(stream=stream)
        logging.getLogger('fleet.test').info('hello')
        assert '[INFO] hello' in stream.getvalue()

    def test_replaces_existing_handlers(self):
        """Repeated configuration should not duplicate handlers."""
        configure_logging(stream=io.StringIO())
        configure_logging(stream=io.StringIO())
        assert len(logging.getLogger().handlers) == 1

    def test_quiets_paramiko(self):
        """paramiko logger should be raised to WARNING."""
        configure_logging(verbose=True, stream=io.StringIO())
        assert logging.getLogger('paramiko').level == logging.WARNING


class TestFormatDuration:
    """Test format_duration."""

    def test_seconds(self):
        assert format_duration(4.0) == '4.0s'

    def test_minutes(self):
        assert format_duration(125) == '2m05s'
