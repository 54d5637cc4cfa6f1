"""Tests for imapbak CLI commands."""

from datetime import datetime

import pytest
import yaml
from click.testing import CliRunner

from conftest import make_message

from imapbak.cli import main
from imapbak.errors import ProtocolFailure
from imapbak.storage import LocalFolder, list_local_folders


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def storage(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def connected(monkeypatch):
    """Route CLI sessions to a given fake server, recording each session's config."""
    configs = []

    def use(server):
        def connect(config):
            configs.append(config)
            return server

        monkeypatch.setattr("imapbak.cli.utils.connect_client", connect)
        return configs

    return use


def args(storage, *extra):
    return [
        *extra,
        "-s", "imap.example.com",
        "-u", "me",
        "-P", "secret",
        "-S", str(storage),
        "--retry-delay", "0",
    ]


class TestHelp:
    def test_aliases_listed(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for line in ("backup (b)", "delete (d)", "init (i)", "local (l)", "query (q)", "restore (r)"):
            assert line in result.output

    def test_alias_resolves(self, runner):
        result = runner.invoke(main, ["q", "--help"])
        assert result.exit_code == 0
        assert "not yet backed up" in result.output


class TestQuery:
    def test_query(self, runner, inbox, storage, connected):
        configs = connected(inbox)
        result = runner.invoke(main, args(storage, "query"))
        assert result.exit_code == 0, result.output
        assert "imap.example.com/me (3/3 messages" in result.output
        assert "|- INBOX (3, " in result.output
        (config,) = configs
        assert (config.server, config.user, config.password) == ("imap.example.com", "me", "secret")
        assert inbox.disconnected == 1
        assert not storage.exists()

    def test_restrict(self, runner, inbox, storage, connected):
        inbox.add_folder("Sent")
        connected(inbox)
        result = runner.invoke(main, args(storage, "q", "-r", "Sent"))
        assert result.exit_code == 0, result.output
        assert "|- Sent (0, " in result.output
        assert "INBOX" not in result.output

    def test_password_from_stdin(self, runner, inbox, storage, connected):
        configs = connected(inbox)
        cmd = ["query", "-s", "imap.example.com", "-u", "me", "-S", str(storage)]
        result = runner.invoke(main, cmd, input="piped-secret\n")
        assert result.exit_code == 0, result.output
        assert configs[0].password == "piped-secret"

    def test_password_from_env(self, runner, inbox, storage, connected, monkeypatch):
        configs = connected(inbox)
        monkeypatch.setenv("IMAPBAK_PASSWORD", "env-secret")
        cmd = ["query", "-s", "imap.example.com", "-u", "me", "-S", str(storage)]
        result = runner.invoke(main, cmd)
        assert result.exit_code == 0, result.output
        assert configs[0].password == "env-secret"


class TestBackup:
    def test_backup_twice(self, runner, inbox, storage, connected):
        connected(inbox)
        result = runner.invoke(main, args(storage, "backup"))
        assert result.exit_code == 0, result.output
        assert "Backed up 3 messages" in result.output
        root = storage / "imap.example.com" / "me"
        assert f"Local storage: {root}" in result.output
        assert list_local_folders(root) == ["INBOX"]

        result = runner.invoke(main, args(storage, "b"))
        assert result.exit_code == 0, result.output
        assert "(0/3 messages" in result.output
        assert "Nothing to back up." in result.output

    def test_connection_failure_retries(self, runner, storage, monkeypatch):
        attempts = []

        def refuse(config):
            attempts.append(config)
            raise ProtocolFailure("Cannot log in to imap.example.com:993 as me: refused")

        monkeypatch.setattr("imapbak.cli.utils.connect_client", refuse)
        result = runner.invoke(main, args(storage, "backup", "--retries", "2"))
        assert result.exit_code == 1
        assert len(attempts) == 3
        assert "Retrying in 0s (1/2)" in result.output
        assert "Retrying in 0s (2/2)" in result.output
        assert result.output.count("Error: Cannot log in") == 3

    def test_invalid_config(self, runner, storage, isolated_config):
        isolated_config.write_text("sever: typo\n")
        result = runner.invoke(main, args(storage, "backup"))
        assert result.exit_code == 1
        assert "Invalid config" in result.output
        assert "sever" in result.output


class TestLocalAndRestore:
    def test_local_empty(self, runner, storage):
        result = runner.invoke(main, args(storage, "local"))
        assert result.exit_code == 0, result.output
        assert "No local folders in" in result.output

    def test_local_needs_no_password(self, runner, inbox, storage, connected):
        connected(inbox)
        runner.invoke(main, args(storage, "backup"))
        cmd = ["l", "-s", "imap.example.com", "-u", "me", "-S", str(storage)]
        result = runner.invoke(main, cmd)
        assert result.exit_code == 0, result.output
        assert "(3/3 messages" in result.output
        assert "|- INBOX (3, " in result.output

    def test_restore_to_empty_server(self, runner, inbox, mailbox, storage, connected):
        connected(inbox)
        assert runner.invoke(main, args(storage, "backup")).exit_code == 0

        fresh = type(mailbox)()
        connected(fresh)
        result = runner.invoke(main, args(storage, "restore"))
        assert result.exit_code == 0, result.output
        assert "Restored 3 messages" in result.output
        assert [m.raw for m in fresh.folders["INBOX"].messages] == [m.raw for m in inbox.folders["INBOX"].messages]

    def test_restore_nothing(self, runner, inbox, storage, connected):
        connected(inbox)
        runner.invoke(main, args(storage, "backup"))
        result = runner.invoke(main, args(storage, "r"))
        assert result.exit_code == 0, result.output
        assert "Nothing to restore." in result.output

    def test_restore_warns_without_received(self, runner, mailbox, storage, connected):
        root = storage / "imap.example.com" / "me"
        with LocalFolder.open_append(root, "INBOX") as lf:
            lf.append(7, 1, "a@b", datetime(2020, 1, 1), make_message(1, received=None))
        connected(mailbox)
        result = runner.invoke(main, args(storage, "restore"))
        assert result.exit_code == 0, result.output
        assert "Missing Received" in result.output
        assert "Warnings: 1 messages uploaded with server time" in result.output


class TestDelete:
    def test_requires_months(self, runner, storage):
        result = runner.invoke(main, args(storage, "delete", "-y"))
        assert result.exit_code == 2
        assert "Missing --months" in result.output

    def test_negative_months(self, runner, storage):
        result = runner.invoke(main, args(storage, "delete", "-m", "-1", "-y"))
        assert result.exit_code == 2

    def test_delete_confirmed(self, runner, inbox, storage, connected):
        connected(inbox)
        result = runner.invoke(main, args(storage, "delete", "-m", "1", "-y"))
        assert result.exit_code == 0, result.output
        assert "deleting messages 1 months or older" in result.output
        assert "Total 3 messages deleted" in result.output
        assert inbox.folders["INBOX"].messages == []

    def test_delete_declined(self, runner, inbox, storage, connected):
        configs = connected(inbox)
        result = runner.invoke(main, args(storage, "d", "-m", "1"), input="n\n")
        assert result.exit_code == 0, result.output
        assert "User did not confirm, aborting." in result.output
        assert configs == []
        assert len(inbox.folders["INBOX"].messages) == 3

    def test_months_from_config(self, runner, inbox, storage, connected, isolated_config):
        isolated_config.write_text("months: 1\nforce: true\n")
        connected(inbox)
        result = runner.invoke(main, args(storage, "delete"))
        assert result.exit_code == 0, result.output
        assert "Total 3 messages deleted" in result.output


class TestInit:
    def test_init(self, runner, storage, isolated_config):
        cmd = ["init", "-s", "imap.example.com", "-u", "me", "-P", "secret", "-S", str(storage)]
        result = runner.invoke(main, cmd)
        assert result.exit_code == 0, result.output
        assert f"Config saved to {isolated_config}" in result.output
        assert yaml.safe_load(isolated_config.read_text()) == {
            "server": "imap.example.com",
            "user": "me",
            "storage": str(storage),
        }

    def test_init_explicit_path_then_use(self, runner, inbox, tmp_path, storage, connected):
        path = tmp_path / "custom.yaml"
        cmd = ["i", "-c", str(path), "-s", "imap.example.com", "-u", "me", "-S", str(storage)]
        result = runner.invoke(main, cmd)
        assert result.exit_code == 0, result.output
        assert path.exists()

        configs = connected(inbox)
        result = runner.invoke(main, ["query", "-c", str(path), "-P", "secret"])
        assert result.exit_code == 0, result.output
        assert configs[0].server == "imap.example.com"
        assert configs[0].storage == storage

    def test_init_without_server(self, runner, storage):
        result = runner.invoke(main, ["init", "-S", str(storage)])
        assert result.exit_code == 0, result.output
        assert "you'll be prompted" in result.output
