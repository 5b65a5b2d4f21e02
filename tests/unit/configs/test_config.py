import pytest

from eventsync.configs.config import Config
from eventsync.configs.settings import Settings


@pytest.fixture
def settings():
    return Settings(_env_file=None, DEFAULT_CITY="Corner Brook, NL")


def test_load_bundled_sources(settings):
    """Test that the bundled sources file parses and names its adapters."""
    data = Config.load_sources_config(settings=settings)
    sources = data["sources"]
    assert sources
    for name, cfg in sources.items():
        assert cfg.get("adapter"), f"source {name} has no adapter"


def test_placeholders_substituted(tmp_path, settings):
    """Test that ${VAR} placeholders are replaced from settings."""
    path = tmp_path / "sources.yaml"
    path.write_text(
        "sources:\n"
        "  local:\n"
        "    adapter: ics_feed\n"
        "    default_city: \"${DEFAULT_CITY}\"\n",
        encoding="utf-8",
    )
    data = Config.load_sources_config(path, settings=settings)
    assert data["sources"]["local"]["default_city"] == "Corner Brook, NL"


def test_missing_file_raises(tmp_path, settings):
    """Test that a missing config file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        Config.load_sources_config(tmp_path / "nope.yaml", settings=settings)


def test_sources_must_be_mapping(tmp_path, settings):
    """Test that a list under 'sources' is rejected."""
    path = tmp_path / "sources.yaml"
    path.write_text("sources:\n  - a\n  - b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Config.load_sources_config(path, settings=settings)


def test_empty_file_has_no_sources(tmp_path, settings):
    """Test that an empty file loads as an empty mapping."""
    path = tmp_path / "sources.yaml"
    path.write_text("", encoding="utf-8")
    assert Config.load_sources_config(path, settings=settings) == {}
