import pytest
import structlog

from llmrouter.config import Settings, load_settings
from llmrouter.observability import configure_logging, get_logger


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "GOOGLE_AI_API_KEY",
        "DEEPSEEK_API_KEY", "GOOGLE_CLOUD_PROJECT", "GOOGLE_CLOUD_LOCATION", "VERTEX_KEY_FILE",
        "LLM_TIMEOUT_SECONDS", "LLM_LOG_JSON", "LLM_LOG_LEVEL",
    ):
        # set first so teardown removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestSettings:

    def test_defaults(self, clean_env, tmp_path):
        settings = load_settings(tmp_path / "missing.env")
        assert settings == Settings()
        assert settings.timeout == 60.0
        assert settings.vertex_location == "us-central1"

    def test_environment(self, clean_env, mock_env, monkeypatch, tmp_path):
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "15")
        monkeypatch.setenv("LLM_LOG_JSON", "true")
        monkeypatch.setenv("LLM_LOG_LEVEL", "debug")

        settings = load_settings(tmp_path / "missing.env")

        assert settings.openai_api_key == "sk-test-openai"
        assert settings.deepseek_api_key == "sk-test-deepseek"
        assert settings.timeout == 15.0
        assert settings.log_json is True
        assert settings.log_level == "DEBUG"

    def test_legacy_google_key(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("GOOGLE_AI_API_KEY", "AIza-legacy")
        assert load_settings(tmp_path / "missing.env").google_api_key == "AIza-legacy"

    def test_dotenv_file(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ANTHROPIC_API_KEY=sk-from-file\nGOOGLE_CLOUD_PROJECT=proj-1\n")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-from-env")

        settings = load_settings(env_file)

        # Process environment wins over the file
        assert settings.anthropic_api_key == "sk-from-env"
        assert settings.vertex_project == "proj-1"

    def test_invalid_timeout(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "soon")
        with pytest.raises(ValueError, match="LLM_TIMEOUT_SECONDS"):
            load_settings(tmp_path / "missing.env")


class TestLogging:

    def test_json_logging(self, capsys):
        configure_logging(level="INFO", json=True)
        try:
            get_logger(provider="openai").info("stream_start", model="gpt-4o-mini")
            get_logger().debug("filtered_out")
        finally:
            structlog.reset_defaults()

        err = capsys.readouterr().err
        assert '"event": "stream_start"' in err
        assert '"provider": "openai"' in err
        assert "filtered_out" not in err
