from pathlib import Path

from cartsession.config import (
    ensure_directories,
    get_cart_config,
    get_launcher_config,
    get_local_paths,
    get_pricing_config,
    get_retry_policy,
)


def test_local_paths_follow_data_dir_override(tmp_path, monkeypatch):
    monkeypatch.setenv("CART_DATA_DIR", str(tmp_path / "override"))

    paths = ensure_directories()

    assert paths == get_local_paths()
    assert paths.base_dir == Path(tmp_path / "override")
    assert paths.data_dir.is_dir()
    assert paths.logs_dir.is_dir()


def test_cart_config_defaults(monkeypatch):
    for name in ("CART_SESSION_TTL_SECONDS", "CART_DEBOUNCE_MS", "CART_AUTO_CREATE", "CART_STORE_LATENCY_MS"):
        monkeypatch.delenv(name, raising=False)

    config = get_cart_config()

    assert config.store_backend == "memory"
    assert config.session_ttl_seconds == 24 * 60 * 60
    assert config.debounce_ms == 300
    assert config.auto_create is True
    assert config.store_latency_ms == 0


def test_cart_config_falls_back_on_invalid_values(monkeypatch):
    monkeypatch.setenv("CART_STORE_BACKEND", "redis")
    monkeypatch.setenv("CART_SESSION_TTL_SECONDS", "-5")
    monkeypatch.setenv("CART_DEBOUNCE_MS", "soon")
    monkeypatch.setenv("CART_AUTO_CREATE", "maybe")

    config = get_cart_config()

    assert config.store_backend == "memory"
    assert config.session_ttl_seconds == 24 * 60 * 60
    assert config.debounce_ms == 300
    assert config.auto_create is True


def test_auto_create_can_be_disabled(monkeypatch):
    monkeypatch.setenv("CART_AUTO_CREATE", "off")
    assert get_cart_config().auto_create is False


def test_retry_policy_reads_milliseconds(monkeypatch):
    monkeypatch.setenv("CART_RETRY_RETRIES", "5")
    monkeypatch.setenv("CART_RETRY_BASE_DELAY_MS", "100")
    monkeypatch.setenv("CART_RETRY_MAX_DELAY_MS", "800")
    monkeypatch.setenv("CART_RETRY_TIMEOUT_MS", "0")
    monkeypatch.setenv("CART_RETRY_JITTER", "true")

    policy = get_retry_policy()

    assert policy.retries == 5
    assert policy.base_delay == 0.1
    assert policy.max_delay == 0.8
    assert policy.timeout is None
    assert policy.jitter is True


def test_retry_policy_defaults(monkeypatch):
    for name in ("CART_RETRY_RETRIES", "CART_RETRY_BASE_DELAY_MS", "CART_RETRY_MAX_DELAY_MS", "CART_RETRY_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)

    policy = get_retry_policy()

    assert (policy.retries, policy.base_delay, policy.max_delay, policy.timeout) == (3, 0.3, 2.0, 5.0)


def test_pricing_and_launcher_config(monkeypatch):
    monkeypatch.setenv("CART_PRICE_BUSINESS", "not-a-number")
    monkeypatch.setenv("CART_LOCAL_PORT", "9100")

    pricing = get_pricing_config()
    launcher = get_launcher_config()

    assert pricing.unit_prices["business"] == 25.0
    assert launcher.port == 9100
