"""Tests for configuration loading."""

import pytest

from special_dates.config import DEFAULT_KEYWORDS, AppConfig, ImportConfig
from special_dates.models.special_date import Category
from special_dates.utils.exceptions import ConfigurationError


def _write(tmp_path, text):
    path = tmp_path / "special_dates.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_import_config_defaults(tmp_path):
    import_config = ImportConfig(tmp_path / "missing.yaml")
    assert import_config.strategy == "birthdays"
    assert import_config.keywords == DEFAULT_KEYWORDS
    assert import_config.skip_titles == []


def test_import_config_from_yaml(tmp_path):
    path = _write(
        tmp_path,
        """
import:
  strategy: ALL
  keywords:
    birthday: [Birthday, Geburtstag]
  skip_titles:
    - "  Test Event "
""",
    )
    import_config = ImportConfig(path)

    assert import_config.strategy == "all"
    assert import_config.keywords[Category.BIRTHDAY] == ["birthday", "geburtstag"]
    assert import_config.keywords[Category.WEDDING] == DEFAULT_KEYWORDS[Category.WEDDING]
    assert import_config.skip_titles == ["test event"]


def test_empty_yaml_uses_defaults(tmp_path):
    assert ImportConfig(_write(tmp_path, "")).strategy == "birthdays"


@pytest.mark.parametrize(
    "text",
    [
        "import: [unclosed",
        "import:\n  strategy: everything\n",
        "import:\n  keywords:\n    holiday: [x]\n",
        "import:\n  keywords:\n    custom: [x]\n",
    ],
    ids=["bad-yaml", "unknown-strategy", "unknown-category", "custom-keywords"],
)
def test_import_config_errors(tmp_path, text):
    with pytest.raises(ConfigurationError):
        ImportConfig(_write(tmp_path, text))


def test_app_config_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("OWNER_ID", "alice")
    monkeypatch.setenv("UPCOMING_DAYS", "7")
    monkeypatch.setenv("TIMEZONE", "Europe/Istanbul")
    monkeypatch.setenv("DATA_FILE", str(tmp_path / "dates.json"))

    app_config = AppConfig()

    assert app_config.owner_id == "alice"
    assert app_config.upcoming_days == 7
    assert app_config.timezone == "Europe/Istanbul"
    assert app_config.data_file == tmp_path / "dates.json"
    assert app_config.sync_lookback_days == 365
