"""
Tests for configuration loading

Debug mode must stay off unless FLASK_DEBUG opts in, for every environment.
"""
import importlib
import pytest

import config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload config under the patched environment, then restore it"""
    def _reload():
        return importlib.reload(config)
    yield _reload
    monkeypatch.undo()
    importlib.reload(config)


class TestDebugFlag:

    @pytest.mark.parametrize('env_name', [None, 'development', 'production', 'testing'])
    def test_debug_off_by_default(self, monkeypatch, reload_config, env_name):
        monkeypatch.delenv('FLASK_DEBUG', raising=False)
        monkeypatch.delenv('FLASK_ENV', raising=False)

        reloaded = reload_config()

        assert reloaded.get_config(env_name).DEBUG is False

    def test_debug_opt_in(self, monkeypatch, reload_config):
        monkeypatch.setenv('FLASK_DEBUG', 'true')

        reloaded = reload_config()

        assert reloaded.get_config('development').DEBUG is True
        assert reloaded.get_config('production').DEBUG is False

    def test_development_logs_verbosely(self, monkeypatch, reload_config):
        monkeypatch.delenv('LOG_LEVEL', raising=False)

        reloaded = reload_config()

        assert reloaded.get_config('development').LOG_LEVEL == 'DEBUG'
        assert reloaded.get_config('production').LOG_LEVEL == 'INFO'


class TestGetConfig:

    def test_unknown_name_falls_back_to_default(self):
        assert config.get_config('staging') is config.DevelopmentConfig

    def test_flask_env(self, monkeypatch):
        monkeypatch.setenv('FLASK_ENV', 'production')
        assert config.get_config() is config.ProductionConfig
