import pytest

from auth.errors import AuthorizationDenied
from auth.models import TokenResult
from threadgate import cli


class _FakeFlow:
    def __init__(self, outcome) -> None:
        self.outcome = outcome

    async def login(self) -> TokenResult:
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _patch_flow(monkeypatch, outcome) -> list[dict]:
    calls: list[dict] = []

    def fake_choose(**kwargs):
        calls.append(kwargs)
        return _FakeFlow(outcome)

    monkeypatch.setattr(cli, "load_env", lambda: None)
    monkeypatch.setattr(cli, "choose_login_flow", fake_choose)
    return calls


def test_login_prints_token(clean_env, capsys) -> None:
    clean_env.setenv("THREADGATE_RELAY_URL", "https://relay.example.com")
    calls = _patch_flow(clean_env, TokenResult(access_token="tok-123"))

    cli.main()

    assert capsys.readouterr().out.strip().splitlines()[-1] == "tok-123"
    assert calls[0]["relay_url"] == "https://relay.example.com"


def test_login_reads_local_settings(clean_env) -> None:
    clean_env.setenv("THREADGATE_CLIENT_ID", "app-id")
    clean_env.setenv("THREADGATE_CLIENT_SECRET", "app-secret")
    clean_env.setenv("THREADGATE_CALLBACK_PORT", "4443")
    clean_env.setenv("THREADGATE_LONG_LIVED", "1")
    calls = _patch_flow(clean_env, TokenResult(access_token="tok"))

    cli.main()

    assert calls[0]["relay_url"] is None
    assert calls[0]["client_id"] == "app-id"
    assert calls[0]["client_secret"] == "app-secret"
    assert calls[0]["callback_port"] == 4443
    assert calls[0]["upgrade_to_long_lived"] is True


def test_login_failure_exits_with_message(clean_env, capsys) -> None:
    _patch_flow(clean_env, AuthorizationDenied("User denied"))

    with pytest.raises(SystemExit) as exit_info:
        cli.main()

    assert exit_info.value.code == 1
    assert "Login failed: Authorization denied: User denied" in capsys.readouterr().err


def test_missing_local_credentials_exit(clean_env, capsys, monkeypatch) -> None:
    monkeypatch.setattr(cli, "load_env", lambda: None)

    with pytest.raises(SystemExit) as exit_info:
        cli.main()

    assert exit_info.value.code == 1
    assert "Login failed:" in capsys.readouterr().err
