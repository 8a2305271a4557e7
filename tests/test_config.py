import argparse
import pytest
from config import load_config, AppConfig

ENV = {}

# Mock the os.environ.get to control environment variables during tests
def mock_environ_get(key, default=None):
    return ENV.get(key, default)

@pytest.fixture(autouse=True)
def setup_env(monkeypatch):
    ENV.clear()
    monkeypatch.setattr('os.environ.get', mock_environ_get)

def _namespace(**overrides):
    values = dict(
        ingest=None,
        analyze=None,
        show_patterns=False,
        show_insights=False,
        show_uploads=False,
        daily=None,
        bot=False,
        db_path=None,
        user=None,
        limit=10,
        timezone='America/New_York',
        lenient_timestamps=False,
        disable_ai_analysis=False,
        log_level='INFO',
    )
    values.update(overrides)
    return argparse.Namespace(**values)

def test_defaults_for_analyze_mode(monkeypatch):
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(analyze='week'))

    config = load_config()

    assert isinstance(config, AppConfig)
    assert config.analyze_range == 'week'
    assert config.ingest_files == []
    assert config.user_id == 'local'
    assert config.db_path == 'data/flow_insights.db'
    assert config.ai_analysis_enabled is True
    assert config.lenient_timestamps is False

def test_environment_supplies_user_and_db_path(monkeypatch):
    ENV.update({'FLOW_USER_ID': 'desk-1', 'FLOW_DB_PATH': '/tmp/flows.db', 'GEMINI_API_KEY': 'key'})
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(ingest=['a.csv', 'b.csv']))

    config = load_config()

    assert config.user_id == 'desk-1'
    assert config.db_path == '/tmp/flows.db'
    assert config.gemini_api_key == 'key'
    assert config.ingest_files == ['a.csv', 'b.csv']

def test_command_line_overrides_environment(monkeypatch):
    ENV.update({'FLOW_USER_ID': 'desk-1', 'FLOW_DB_PATH': '/tmp/flows.db'})
    monkeypatch.setattr(
        'argparse.ArgumentParser.parse_args',
        lambda self: _namespace(show_patterns=True, user='alice', db_path='alice.db', limit=25, lenient_timestamps=True),
    )

    config = load_config()

    assert config.user_id == 'alice'
    assert config.db_path == 'alice.db'
    assert config.limit == 25
    assert config.show_patterns is True
    assert config.lenient_timestamps is True

def test_daily_is_a_mode_on_its_own(monkeypatch):
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(daily='today'))
    assert load_config().daily_date == 'today'

    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(daily='2026-10-16'))
    assert load_config().daily_date == '2026-10-16'

def test_ai_analysis_env_var_overrides_flag(monkeypatch):
    ENV['AI_ANALYSIS_ENABLED'] = 'false'
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(analyze='today'))
    assert load_config().ai_analysis_enabled is False

    monkeypatch.setattr(
        'argparse.ArgumentParser.parse_args',
        lambda self: _namespace(analyze='today', disable_ai_analysis=True),
    )
    ENV['AI_ANALYSIS_ENABLED'] = 'true'
    assert load_config().ai_analysis_enabled is True

def test_no_mode_is_an_error(monkeypatch):
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace())
    with pytest.raises(SystemExit):
        load_config()

def test_bot_requires_token(monkeypatch):
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(bot=True))
    with pytest.raises(SystemExit):
        load_config()

    ENV['TELEGRAM_BOT_TOKEN'] = 'token'
    config = load_config()
    assert config.bot_enabled is True
    assert config.telegram_bot_token == 'token'
