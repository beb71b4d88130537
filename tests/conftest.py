import pytest

from webhook_handler.config import Settings

SECRET = b'testsecret'


@pytest.fixture(autouse=True)
def no_telegram(monkeypatch):
    monkeypatch.delenv('TELEGRAM_BOT_TOKEN', raising=False)
    monkeypatch.delenv('TELEGRAM_CHAT_ID', raising=False)


@pytest.fixture
def make_settings(tmp_path):
    """Write a deployment script into tmp_path and return Settings pointing at it."""
    def _make(script_body: str = 'exit 0\n', **overrides) -> Settings:
        script = tmp_path / 'deploy.sh'
        script.write_text(script_body)
        values = dict(
            secret=SECRET,
            script_path=str(script),
            source_dir=str(tmp_path),
            script_timeout=10.0,
        )
        values.update(overrides)
        return Settings(**values)
    return _make
