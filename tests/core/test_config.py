from __future__ import annotations

from pathlib import Path

import pytest

from readingsync.config import Settings, default_data_dir


def test_settings_defaults_use_data_dir(tmp_path: Path) -> None:
    settings = Settings.from_env({"READINGSYNC_DATA_DIR": str(tmp_path)})

    assert settings.data_dir == tmp_path
    assert settings.output_path == tmp_path / "library.json"
    assert settings.profile_dir == tmp_path / "chrome_profile"
    assert settings.region.code == "us"
    assert settings.headless is False
    assert settings.login_timeout_seconds == 300.0
    assert settings.book_timeout_seconds == 10.0
    assert settings.max_pages == 100
    assert settings.clippings_path is None
    assert settings.apple_books_library_db is None


def test_settings_read_overrides(tmp_path: Path) -> None:
    settings = Settings.from_env(
        {
            "READINGSYNC_DATA_DIR": str(tmp_path),
            "READINGSYNC_OUTPUT_PATH": str(tmp_path / "export.json"),
            "KINDLE_REGION": "UK",
            "KINDLE_HEADLESS": "yes",
            "KINDLE_LOGIN_TIMEOUT_SECONDS": "60",
            "KINDLE_BOOK_TIMEOUT_SECONDS": "2.5",
            "KINDLE_MAX_PAGES": "5",
            "KINDLE_CLIPPINGS_PATH": str(tmp_path / "My Clippings.txt"),
            "APPLE_BOOKS_LIBRARY_DB": str(tmp_path / "lib.sqlite"),
        }
    )

    assert settings.output_path == tmp_path / "export.json"
    assert settings.region.notebook_url.startswith("https://read.amazon.co.uk")
    assert settings.headless is True
    assert settings.login_timeout_seconds == 60.0
    assert settings.book_timeout_seconds == 2.5
    assert settings.max_pages == 5
    assert settings.clippings_path == tmp_path / "My Clippings.txt"
    assert settings.apple_books_library_db == tmp_path / "lib.sqlite"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("KINDLE_REGION", "mars"),
        ("KINDLE_HEADLESS", "maybe"),
        ("KINDLE_MAX_PAGES", "0"),
        ("KINDLE_POLL_INTERVAL_SECONDS", "0"),
        ("KINDLE_LOGIN_TIMEOUT_SECONDS", "abc"),
    ],
)
def test_invalid_settings_raise_value_error(tmp_path: Path, name: str, value: str) -> None:
    with pytest.raises(ValueError):
        Settings.from_env({"READINGSYNC_DATA_DIR": str(tmp_path), name: value})


def test_default_data_dir_ends_with_app_name(tmp_path: Path) -> None:
    path = default_data_dir({"HOME": str(tmp_path), "XDG_DATA_HOME": str(tmp_path / "xdg"), "LOCALAPPDATA": str(tmp_path / "local")})

    assert path.name == "readingsync"
    assert str(path).startswith(str(tmp_path))
