"""
Unit tests for CLI functionality.

Tests the smart-bookmarks command-line interface: status, list, add, delete, demo.
"""

import json
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch
from click.testing import CliRunner
from rich.console import Console

from core.models.bookmarks import Bookmark
from core.sync.errors import NetworkFailure
from smart_bookmarks.backend.memory import InMemoryChangeChannel
from smart_bookmarks.cli import main


def make_backend(**async_methods):
    backend = Mock()
    backend.close = Mock()
    for name in ("fetch_all", "create", "delete", "health_check"):
        setattr(backend, name, AsyncMock(**async_methods.get(name, {})))
    return backend


def bookmark(bookmark_id, created_at):
    return Bookmark(
        id=bookmark_id,
        owner_id="user-1",
        title=f"Title {bookmark_id}",
        url=f"https://example.com/{bookmark_id}",
        created_at=created_at
    )


class TestCliBase:

    def setup_method(self):
        """Set up test environment"""
        self.runner = CliRunner()

    def invoke(self, args, backend=None):
        base = ['--config', 'config.json', '--log-level', 'ERROR']
        # Wide console so table cells are not wrapped
        with patch('smart_bookmarks.cli.console', Console(width=200)), \
                patch('smart_bookmarks.cli._create_backend', return_value=backend or make_backend()):
            return self.runner.invoke(main, base + args)


class TestMainGroup(TestCliBase):

    def test_help(self):
        result = self.runner.invoke(main, ['--help'])

        assert result.exit_code == 0
        for command in ("status", "list", "add", "delete", "demo"):
            assert command in result.output

    def test_version(self):
        result = self.runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_config_file_is_loaded(self):
        with self.runner.isolated_filesystem():
            Path('config.json').write_text(json.dumps({"backend": {"url": "https://custom.example.com"}}))
            backend = make_backend(health_check={"return_value": True})

            result = self.invoke(['status'], backend)

            assert result.exit_code == 0
            assert "https://custom.example.com" in result.output


class TestStatusCommand(TestCliBase):

    def test_status_reachable(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(health_check={"return_value": True})

            result = self.invoke(['status'], backend)

            assert result.exit_code == 0
            assert "Smart Bookmarks Status" in result.output
            assert "reachable" in result.output
            assert "unreachable" not in result.output
            backend.close.assert_called_once()

    def test_status_unreachable(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(health_check={"return_value": False})

            result = self.invoke(['status'], backend)

            assert result.exit_code == 0
            assert "unreachable" in result.output


class TestListCommand(TestCliBase):

    def test_list_renders_newest_first(self):
        from datetime import datetime, timezone

        rows = [
            bookmark("older", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            bookmark("newer", datetime(2024, 2, 1, tzinfo=timezone.utc)),
        ]
        with self.runner.isolated_filesystem():
            backend = make_backend(fetch_all={"return_value": rows})

            result = self.invoke(['list', '--user-id', 'user-1'], backend)

            assert result.exit_code == 0
            assert result.output.index("Title newer") < result.output.index("Title older")
            backend.fetch_all.assert_awaited_once_with("user-1")

    def test_list_empty(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(fetch_all={"return_value": []})

            result = self.invoke(['list', '--user-id', 'user-1'], backend)

            assert result.exit_code == 0
            assert "no bookmarks" in result.output

    def test_list_failure(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(fetch_all={"side_effect": NetworkFailure("unreachable host")})

            result = self.invoke(['list', '--user-id', 'user-1'], backend)

            assert result.exit_code == 1
            assert "unreachable host" in result.output

    def test_list_requires_user(self):
        result = self.runner.invoke(main, ['list'])

        assert result.exit_code != 0


class TestAddCommand(TestCliBase):

    def test_add_success(self):
        from datetime import datetime, timezone

        created = bookmark("1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        with self.runner.isolated_filesystem():
            backend = make_backend(create={"return_value": created})

            result = self.invoke(['add', ' GitHub ', 'https://github.com', '--user-id', 'user-1'], backend)

            assert result.exit_code == 0
            assert "Added" in result.output
            backend.create.assert_awaited_once_with("GitHub", "https://github.com", "user-1")

    def test_add_validation_failure(self):
        with self.runner.isolated_filesystem():
            backend = make_backend()

            result = self.invoke(['add', '', 'https://github.com', '--user-id', 'user-1'], backend)

            assert result.exit_code == 1
            assert "validation" in result.output
            backend.create.assert_not_called()

    def test_add_network_failure(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(create={"side_effect": NetworkFailure("service down", status_code=503)})

            result = self.invoke(['add', 'T', 'https://t', '--user-id', 'user-1'], backend)

            assert result.exit_code == 1
            assert "network" in result.output


class TestDeleteCommand(TestCliBase):

    def test_delete_success(self):
        with self.runner.isolated_filesystem():
            backend = make_backend()

            result = self.invoke(['delete', '42'], backend)

            assert result.exit_code == 0
            assert "Deleted 42" in result.output
            backend.delete.assert_awaited_once_with("42")

    def test_delete_failure(self):
        with self.runner.isolated_filesystem():
            backend = make_backend(delete={"side_effect": NetworkFailure("timeout")})

            result = self.invoke(['delete', '42'], backend)

            assert result.exit_code == 1


class TestDemoCommand(TestCliBase):

    def test_demo_runs_full_session(self):
        with self.runner.isolated_filesystem():
            result = self.invoke(['demo'])

            assert result.exit_code == 0, result.output
            assert "After three creates" in result.output
            assert "After reconnect and resnapshot" in result.output
            assert "Demo complete" in result.output
            assert "1 resubscription" in result.output

    def test_demo_fails_when_events_never_arrive(self):
        class SilentChannel(InMemoryChangeChannel):
            def publish(self, payload):
                return 0

        with self.runner.isolated_filesystem():
            Path('config.json').write_text(json.dumps({"settle_timeout": 0.2}))
            with patch('smart_bookmarks.cli.InMemoryChangeChannel', SilentChannel):
                result = self.invoke(['demo'])

            assert result.exit_code == 1
            assert "never arrived" in result.output
            assert "After three creates" not in result.output
