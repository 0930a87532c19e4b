import logging

import pytest
from rich.logging import RichHandler

from accountsync.main import build_parser, main


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ACCOUNTSYNC_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("ACCOUNTSYNC_TOKEN_DIR", str(tmp_path / "tokens"))
    yield tmp_path
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)


def test_parser():
    args = build_parser().parse_args(["sync", "me@example.com", "--only", "mail", "--full"])
    assert args.command == "sync"
    assert args.only == "mail"
    assert args.full is True

    args = build_parser().parse_args(["search", "me@example.com", "from:bob", "-n", "5", "--remote"])
    assert (args.query, args.limit, args.remote) == ("from:bob", 5, True)

    with pytest.raises(SystemExit):
        build_parser().parse_args(["sync", "me@example.com", "--only", "tasks"])


def test_accounts_command_on_empty_cache(cli_env):
    assert main(["accounts"]) == 0


def test_unknown_account_is_an_error(cli_env, capsys):
    assert main(["status", "nobody@example.com"]) == 1
