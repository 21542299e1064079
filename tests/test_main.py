import server


class _RunRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[object, dict]] = []

    def __call__(self, app, **kwargs) -> None:
        self.calls.append((app, kwargs))


def _patch_main(monkeypatch) -> _RunRecorder:
    recorder = _RunRecorder()
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    return recorder


def test_main_serves_plain_http_with_defaults(relay_env) -> None:
    recorder = _patch_main(relay_env)

    server.main()

    assert len(recorder.calls) == 1
    _, kwargs = recorder.calls[0]
    assert kwargs == {
        "host": "0.0.0.0",
        "port": 8080,
        "log_level": "info",
        "timeout_graceful_shutdown": 30,
    }


def test_main_reads_host_port_and_tls_from_env(relay_env) -> None:
    recorder = _patch_main(relay_env)
    relay_env.setenv("THREADGATE_HOST", "127.0.0.1")
    relay_env.setenv("THREADGATE_PORT", "9443")
    relay_env.setenv("THREADGATE_TLS_CERT", "/etc/tls/cert.pem")
    relay_env.setenv("THREADGATE_TLS_KEY", "/etc/tls/key.pem")

    server.main()

    _, kwargs = recorder.calls[0]
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9443
    assert kwargs["ssl_certfile"] == "/etc/tls/cert.pem"
    assert kwargs["ssl_keyfile"] == "/etc/tls/key.pem"


def test_main_refuses_incomplete_config(clean_env) -> None:
    recorder = _patch_main(clean_env)

    try:
        server.main()
    except RuntimeError as error:
        assert "THREADGATE_CLIENT_ID" in str(error)
    else:
        raise AssertionError("main() should refuse to start without credentials")

    assert recorder.calls == []


def _patch_certificates(monkeypatch, tmp_path) -> list[object]:
    requested: list[object] = []

    def fake_ensure_certificate(settings):
        requested.append(settings)
        return tmp_path / "fullchain.pem", tmp_path / "privkey.pem"

    monkeypatch.setattr(server, "ensure_certificate", fake_ensure_certificate)
    return requested


def test_main_serves_acme_certificate(relay_env, tmp_path) -> None:
    recorder = _patch_main(relay_env)
    requested = _patch_certificates(relay_env, tmp_path)
    relay_env.setenv("THREADGATE_ACME_DOMAIN", "auth.example.com")
    relay_env.setenv("THREADGATE_ACME_EMAIL", "ops@example.com")
    relay_env.setenv("THREADGATE_ACME_DIR", str(tmp_path))
    relay_env.setenv("THREADGATE_ACME_STAGING", "1")

    server.main()

    assert len(requested) == 1
    assert requested[0].domain == "auth.example.com"
    assert requested[0].email == "ops@example.com"
    assert requested[0].cache_dir == str(tmp_path)
    assert requested[0].staging is True
    _, kwargs = recorder.calls[0]
    assert kwargs["ssl_certfile"] == str(tmp_path / "fullchain.pem")
    assert kwargs["ssl_keyfile"] == str(tmp_path / "privkey.pem")


def test_main_prefers_acme_over_manual_certificate(relay_env, tmp_path) -> None:
    recorder = _patch_main(relay_env)
    requested = _patch_certificates(relay_env, tmp_path)
    relay_env.setenv("THREADGATE_ACME_DOMAIN", "auth.example.com")
    relay_env.setenv("THREADGATE_ACME_EMAIL", "ops@example.com")
    relay_env.setenv("THREADGATE_TLS_CERT", "/etc/tls/cert.pem")
    relay_env.setenv("THREADGATE_TLS_KEY", "/etc/tls/key.pem")

    server.main()

    assert len(requested) == 1
    _, kwargs = recorder.calls[0]
    assert kwargs["ssl_certfile"] == str(tmp_path / "fullchain.pem")


def test_main_refuses_acme_without_email(relay_env, tmp_path) -> None:
    recorder = _patch_main(relay_env)
    requested = _patch_certificates(relay_env, tmp_path)
    relay_env.setenv("THREADGATE_ACME_DOMAIN", "auth.example.com")

    try:
        server.main()
    except RuntimeError as error:
        assert "THREADGATE_ACME_EMAIL" in str(error)
    else:
        raise AssertionError("main() should refuse ACME without a contact email")

    assert requested == []
    assert recorder.calls == []


def test_main_plain_mode_never_requests_certificate(relay_env, tmp_path) -> None:
    recorder = _patch_main(relay_env)
    requested = _patch_certificates(relay_env, tmp_path)

    server.main()

    assert requested == []
    assert "ssl_certfile" not in recorder.calls[0][1]
