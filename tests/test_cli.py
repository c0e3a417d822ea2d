"""CLI tests — SSE parsing and token handling (no server needed)."""

from click.testing import CliRunner

from smartflow.cli.main import main, parse_sse


def test_parse_sse_notification_event():
    lines = [
        ": connected",
        "",
        "event: notification",
        'data: {"id": 3, "title": "📢 Hi"}',
        "",
    ]
    assert list(parse_sse(lines)) == [("notification", {"id": 3, "title": "📢 Hi"})]


def test_parse_sse_skips_keepalive_and_defaults_event_name():
    lines = [
        ": keep-alive",
        "",
        'data: {"id": 1}',
        "",
        ": keep-alive",
        "",
    ]
    assert list(parse_sse(lines)) == [("message", {"id": 1})]


def test_parse_sse_incomplete_event_is_not_emitted():
    lines = ["event: notification", 'data: {"id": 1}']
    assert list(parse_sse(lines)) == []


def test_client_command_without_token_fails(monkeypatch):
    monkeypatch.delenv("SMARTFLOW_TOKEN", raising=False)
    result = CliRunner().invoke(main, ["unread"])
    assert result.exit_code == 1
    assert "SMARTFLOW_TOKEN" in result.output


def test_send_requires_recipient(monkeypatch):
    monkeypatch.setenv("SMARTFLOW_TOKEN", "t")
    result = CliRunner().invoke(main, ["send", "Title", "Body"])
    assert result.exit_code == 2
    assert "--user" in result.output


def test_serve_disables_uvicorn_access_log(monkeypatch):
    """The access log would record stream URLs with their ?token=."""
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    result = CliRunner().invoke(main, ["serve", "--port", "5055"])

    assert result.exit_code == 0
    app, kwargs = calls[0]
    assert app == "smartflow.main:app"
    assert kwargs["port"] == 5055
    assert kwargs["access_log"] is False
