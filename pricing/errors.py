from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CheckoutError:
    """
    Базовая ошибка движка. Не исключение: передаётся как Either.left
    или внутри результата (CouponResult.error), UI показывает message.
    """

    message: str
    field: Optional[str] = None

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def retryable(self) -> bool:
        return False


@dataclass(frozen=True)
class ValidationError(CheckoutError):
    """Некорректный ввод (адрес, пустой код купона) - показывается у поля"""


@dataclass(frozen=True)
class IneligibleError(CheckoutError):
    """Купон/скидка не подходит: порог, окно действия, лимит, область"""


@dataclass(frozen=True)
class NotFoundError(CheckoutError):
    """Купон или товар больше не существует - удалить и продолжить"""


@dataclass(frozen=True)
class TransientFetchError(CheckoutError):
    """Бэкенд недоступен или не ответил вовремя; корзина не меняется"""

    @property
    def retryable(self) -> bool:
        return True
