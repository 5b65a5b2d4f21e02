from eventsync.configs.settings import Settings


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_settings_default_values(monkeypatch):
    """Test default values for settings."""
    for name in ("ENV", "DEFAULT_CITY", "DEFAULT_TIMEZONE", "MAX_WORKERS"):
        monkeypatch.delenv(name, raising=False)
    settings = _settings()
    assert settings.ENV == "development"
    assert settings.DEFAULT_CITY == "St. John's, NL"
    assert settings.DEFAULT_TIMEZONE == "America/St_Johns"
    assert settings.MAX_WORKERS == 4
    assert settings.DATABASE_URL.startswith("sqlite:///")


def test_supabase_config_missing(monkeypatch):
    """Test that missing Supabase credentials are reported and rejected."""
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    settings = _settings()
    assert settings.has_supabase_config() is False

    try:
        settings.supabase_credentials()
    except ValueError as e:
        assert "SUPABASE_URL" in str(e)
    else:
        raise AssertionError("supabase_credentials() should raise when unset")


def test_supabase_credentials_strip_quotes():
    """Test that quoted credentials copied from a dashboard are unwrapped."""
    settings = _settings(
        SUPABASE_URL='"https://project.supabase.co"',
        SUPABASE_SERVICE_ROLE_KEY="'service-key'",
    )
    assert settings.has_supabase_config() is True
    assert settings.supabase_credentials() == ("https://project.supabase.co", "service-key")


def test_blank_quoted_key_is_not_configured():
    """Test that a key made only of quotes counts as missing."""
    settings = _settings(SUPABASE_URL="https://project.supabase.co", SUPABASE_SERVICE_ROLE_KEY='""')
    assert settings.has_supabase_config() is False


def test_paths():
    """Test that paths are correctly resolved."""
    settings = _settings()
    assert settings.SOURCES_CONFIG_PATH.name == "sources.yaml"
    assert settings.SOURCES_CONFIG_PATH.exists()
