"""Tests for configuration loading and validation."""

import pytest

from cryptotracker.services.config import (
    ConfigService,
    ConfigValidationException,
    CoinGeckoOptions,
    CONFIG_PATH_ENV,
)


def write_config(tmp_path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_missing_file_uses_defaults(tmp_path):
    service = ConfigService(str(tmp_path / "missing.yaml"))

    assert service.load_and_validate() == {}
    assert service.get_coingecko_options() == CoinGeckoOptions()
    assert service.latest_prices_ttl_seconds == 60
    assert service.ingestion_interval_seconds == 0


def test_valid_config_loaded(tmp_path):
    path = write_config(tmp_path, """
coingecko:
  vs_currency: eur
  per_page: 50
  max_page: 4
cache:
  latest_prices_ttl_seconds: 15
ingestion:
  interval_seconds: 300
logging:
  level: DEBUG
""")
    service = ConfigService(path)
    service.load_and_validate()

    options = service.get_coingecko_options()
    assert options.vs_currency == "eur"
    assert options.per_page == 50
    assert options.max_page == 4
    # Unset keys keep their defaults
    assert options.base_url == "https://api.coingecko.com"
    assert options.user_agent == "CryptoPriceService/1.1"
    assert service.latest_prices_ttl_seconds == 15
    assert service.ingestion_interval_seconds == 300
    assert service.get("logging.level") == "DEBUG"


def test_empty_file_is_valid(tmp_path):
    service = ConfigService(write_config(tmp_path, ""))
    assert service.load_and_validate() == {}


def test_unknown_key_rejected(tmp_path):
    service = ConfigService(write_config(tmp_path, "coingecko:\n  api_token: abc\n"))

    with pytest.raises(ConfigValidationException) as exc_info:
        service.load_and_validate()

    assert exc_info.value.errors[0].path == "coingecko.api_token"


def test_blank_string_rejected(tmp_path):
    service = ConfigService(write_config(tmp_path, "coingecko:\n  user_agent: '  '\n"))

    with pytest.raises(ConfigValidationException) as exc_info:
        service.load_and_validate()

    assert exc_info.value.errors[0].message == "Value must not be blank"


@pytest.mark.parametrize("value", ["0", "-3", "true", "'ten'"])
def test_invalid_max_page_rejected(tmp_path, value):
    service = ConfigService(write_config(tmp_path, f"coingecko:\n  max_page: {value}\n"))

    with pytest.raises(ConfigValidationException):
        service.load_and_validate()


def test_invalid_log_level_rejected(tmp_path):
    service = ConfigService(write_config(tmp_path, "logging:\n  level: LOUD\n"))

    with pytest.raises(ConfigValidationException):
        service.load_and_validate()


def test_invalid_yaml_rejected(tmp_path):
    service = ConfigService(write_config(tmp_path, "coingecko: [unclosed\n"))

    with pytest.raises(ConfigValidationException) as exc_info:
        service.load_and_validate()

    assert "Invalid YAML syntax" in str(exc_info.value)


def test_non_mapping_rejected(tmp_path):
    service = ConfigService(write_config(tmp_path, "- a\n- b\n"))

    with pytest.raises(ConfigValidationException):
        service.load_and_validate()


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = write_config(tmp_path, "coingecko:\n  vs_currency: gbp\n")
    monkeypatch.setenv(CONFIG_PATH_ENV, path)

    service = ConfigService()
    service.load_and_validate()

    assert service.config_path == path
    assert service.get_coingecko_options().vs_currency == "gbp"
