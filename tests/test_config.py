"""Tests for settings helpers."""

from caltrack.config import DEFAULT_DATA_TYPES, Settings, parse_data_types


def test_parse_data_types_keeps_declared_order() -> None:
    assert parse_data_types(" Foundation, Branded ,Foundation,") == (
        "Foundation",
        "Branded",
    )


def test_parse_data_types_falls_back_to_defaults() -> None:
    assert parse_data_types(None) == DEFAULT_DATA_TYPES
    assert parse_data_types(" , ") == DEFAULT_DATA_TYPES


def test_page_size_is_clamped() -> None:
    assert Settings(fdc_page_size=1000).fdc_page_size == 200
    assert Settings(fdc_page_size=0).fdc_page_size == 1


def test_defaults() -> None:
    settings = Settings()

    assert settings.fdc_api_key == "DEMO_KEY"
    assert settings.sync_rate_limit_wait_seconds > 60
    assert settings.admin_token is None
