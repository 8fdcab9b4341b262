import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    """Настройки движка. Значения по умолчанию совпадают с витриной"""

    currency: str = "USD"
    fetch_timeout: float = 5.0  # секунды на запрос каталога / купона
    tax_wildcard: str = "All"
    cart_key_prefix: str = "shopping-cart-"
    seed_path: str = "data/seed.json"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Читает STOREFRONT_* из окружения.
    Некорректный таймаут игнорируется (остаётся значение по умолчанию).
    """
    env = os.environ if env is None else env
    defaults = Settings()

    try:
        timeout = float(env.get("STOREFRONT_FETCH_TIMEOUT", defaults.fetch_timeout))
    except ValueError:
        timeout = defaults.fetch_timeout
    if timeout <= 0:
        timeout = defaults.fetch_timeout

    return Settings(
        currency=env.get("STOREFRONT_CURRENCY", defaults.currency).upper(),
        fetch_timeout=timeout,
        tax_wildcard=env.get("STOREFRONT_TAX_WILDCARD", defaults.tax_wildcard),
        cart_key_prefix=env.get("STOREFRONT_CART_KEY_PREFIX", defaults.cart_key_prefix),
        seed_path=env.get("STOREFRONT_SEED_PATH", defaults.seed_path),
    )


DEFAULT_SETTINGS = Settings()
