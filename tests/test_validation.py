#!/usr/bin/env python3
"""Tests for validation.py - server field checks."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from validation import (
    is_valid_hostname,
    validate_host,
    validate_key_path,
    validate_port,
    validate_server_fields,
    validate_server_name,
)


class TestValidateServerName:
    """Test validate_server_name."""

    @pytest.mark.parametrize('name', ['web1', 'db.prod', 'app_2', 'edge-01'])
    def test_valid_names(self, name):
        ok, _ = validate_server_name(name)
        assert ok is True

    @pytest.mark.parametrize('name', ['', '   ', '-web', 'web 1', 'web;rm'])
    def test_invalid_names(self, name):
        ok, message = validate_server_name(name)
        assert ok is False
        assert message


class TestValidateHost:
    """Test validate_host."""

    @pytest.mark.parametrize('host', ['192.0.2.1', '2001:db8::1', 'example.com', 'web-1.example.org'])
    def test_valid_hosts(self, host):
        ok, _ = validate_host(host)
        assert ok is True

    @pytest.mark.parametrize('host', ['', '999.1.1.1', 'bad_host!', '-leading.example.com'])
    def test_invalid_hosts(self, host):
        ok, _ = validate_host(host)
        assert ok is False

    def test_numeric_dotted_is_not_hostname(self):
        """Malformed IPs should not pass as hostnames."""
        assert is_valid_hostname('300.2.3.4') is False


class TestValidatePort:
    """Test validate_port."""

    @pytest.mark.parametrize('port', [1, 22, '2222', 65535])
    def test_valid_ports(self, port):
        ok, _ = validate_port(port)
        assert ok is True

    @pytest.mark.parametrize('port', [0, 65536, -1, 'ssh', None, True])
    def test_invalid_ports(self, port):
        ok, _ = validate_port(port)
        assert ok is False


class TestValidateKeyPath:
    """Test validate_key_path."""

    def test_existing_key(self, key_file):
        ok, _ = validate_key_path(str(key_file))
        assert ok is True

    def test_missing_key(self, tmp_path):
        ok, message = validate_key_path(str(tmp_path / 'nope'))
        assert ok is False
        assert 'not found' in message


class TestValidateServerFields:
    """Test combined validation."""

    def test_all_valid(self, key_file):
        assert validate_server_fields('web1', '192.0.2.1', 22, str(key_file)) == []

    def test_collects_all_errors(self, tmp_path):
        errors = validate_server_fields('', 'bad host', 0, str(tmp_path / 'missing'))
        assert len(errors) == 4
