from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class LocalPaths:
    base_dir: Path
    data_dir: Path
    logs_dir: Path


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 3
    base_delay: float = 0.3
    max_delay: float = 2.0
    timeout: float | None = 5.0
    jitter: bool = False


@dataclass(frozen=True)
class PricingConfig:
    unit_prices: dict[str, float]
    annual_discount_rate: float
    currency: str


@dataclass(frozen=True)
class CartConfig:
    store_backend: str
    session_ttl_seconds: int
    debounce_ms: int
    auto_create: bool
    store_latency_ms: int


@dataclass(frozen=True)
class LauncherConfig:
    host: str
    port: int


def _default_base_dir() -> Path:
    override = os.getenv("CART_DATA_DIR")
    if override:
        return Path(override).expanduser()
    if sys.platform == "win32":
        root = Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return root / "CartSession"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "CartSession"
    root = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return root / "cart_session"


def get_local_paths() -> LocalPaths:
    base_dir = _default_base_dir()
    return LocalPaths(
        base_dir=base_dir,
        data_dir=base_dir / "data",
        logs_dir=base_dir / "logs",
    )


def ensure_directories() -> LocalPaths:
    paths = get_local_paths()
    for path in (paths.base_dir, paths.data_dir, paths.logs_dir):
        path.mkdir(parents=True, exist_ok=True)
    return paths


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_cart_config() -> CartConfig:
    backend = os.getenv("CART_STORE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "file"}:
        backend = "memory"
    ttl = _parse_int(os.getenv("CART_SESSION_TTL_SECONDS"), 24 * 60 * 60)
    if ttl <= 0:
        ttl = 24 * 60 * 60
    return CartConfig(
        store_backend=backend,
        session_ttl_seconds=ttl,
        debounce_ms=max(_parse_int(os.getenv("CART_DEBOUNCE_MS"), 300), 0),
        auto_create=_parse_bool(os.getenv("CART_AUTO_CREATE"), True),
        store_latency_ms=max(_parse_int(os.getenv("CART_STORE_LATENCY_MS"), 0), 0),
    )


def get_pricing_config() -> PricingConfig:
    currency = os.getenv("CART_CURRENCY", "USD").strip().upper() or "USD"
    return PricingConfig(
        unit_prices={
            "plus": _parse_float(os.getenv("CART_PRICE_PLUS"), 20.0),
            "business": _parse_float(os.getenv("CART_PRICE_BUSINESS"), 25.0),
        },
        annual_discount_rate=_parse_float(os.getenv("CART_ANNUAL_DISCOUNT_RATE"), 0.16),
        currency=currency,
    )


def get_retry_policy() -> RetryPolicy:
    timeout_ms = _parse_int(os.getenv("CART_RETRY_TIMEOUT_MS"), 5000)
    return RetryPolicy(
        retries=max(_parse_int(os.getenv("CART_RETRY_RETRIES"), 3), 0),
        base_delay=_parse_int(os.getenv("CART_RETRY_BASE_DELAY_MS"), 300) / 1000,
        max_delay=_parse_int(os.getenv("CART_RETRY_MAX_DELAY_MS"), 2000) / 1000,
        # A non-positive timeout disables the overall deadline.
        timeout=timeout_ms / 1000 if timeout_ms > 0 else None,
        jitter=_parse_bool(os.getenv("CART_RETRY_JITTER"), False),
    )


def get_launcher_config() -> LauncherConfig:
    return LauncherConfig(
        host=os.getenv("CART_LOCAL_HOST", "127.0.0.1"),
        port=_parse_int(os.getenv("CART_LOCAL_PORT"), 8000),
    )
