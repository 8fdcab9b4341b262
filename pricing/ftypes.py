# pricing/ftypes.py
# Maybe and Either for the checkout engine.
# Failures (bad coupon, vanished product, backend timeout) travel as Left values
# instead of exceptions, so the UI layer always gets a result back.

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, Tuple, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
L = TypeVar("L")
R = TypeVar("R")
M = TypeVar("M")


@dataclass(frozen=True)
class Maybe(Generic[T]):
    """
    Опциональное значение: товар/вариант/купон, которого может не быть.
    Maybe.some(value), Maybe.nothing() или Maybe.from_optional(x).
    """

    value: Optional[T]

    @staticmethod
    def some(value: T) -> "Maybe[T]":
        return Maybe(value)

    @staticmethod
    def nothing() -> "Maybe[None]":
        return Maybe(None)

    @staticmethod
    def from_optional(value: Optional[T]) -> "Maybe[T]":
        return Maybe.some(value) if value is not None else Maybe.nothing()

    def is_some(self) -> bool:
        return self.value is not None

    def is_none(self) -> bool:
        return self.value is None

    def map(self, fn: Callable[[T], U]) -> "Maybe[U]":
        return Maybe.from_optional(fn(self.value)) if self.is_some() else Maybe.nothing()

    def bind(self, fn: Callable[[T], "Maybe[U]"]) -> "Maybe[U]":
        return fn(self.value) if self.is_some() else Maybe.nothing()

    def to_either(self, error: L) -> "Either[L, T]":
        """Nothing превращается в Left(error)"""
        return Either.right(self.value) if self.is_some() else Either.left(error)

    def get_or_else(self, default: U) -> T | U:
        return self.value if self.is_some() else default

    def __repr__(self) -> str:
        return f"Some({self.value})" if self.is_some() else "Nothing"


@dataclass(frozen=True)
class Either(Generic[L, R]):
    """
    Either<L, R>: Left - ошибка (CheckoutError), Right - результат.

    Фабрики: Either.left(val), Either.right(val)
    Методы: map, map_left, bind, fold, get_or_else
    """

    is_left: bool
    value: Union[L, R]

    @staticmethod
    def left(value: L) -> "Either[L, R]":
        return Either(True, value)

    @staticmethod
    def right(value: R) -> "Either[L, R]":
        return Either(False, value)

    @property
    def is_right(self) -> bool:
        return not self.is_left

    def map(self, fn: Callable[[R], U]) -> "Either[L, U]":
        return Either.right(fn(self.value)) if self.is_right else self  # type: ignore[return-value]

    def map_left(self, fn: Callable[[L], M]) -> "Either[M, R]":
        return Either.left(fn(self.value)) if self.is_left else self  # type: ignore[return-value]

    def bind(self, fn: Callable[[R], "Either[L, U]"]) -> "Either[L, U]":
        return fn(self.value) if self.is_right else self  # type: ignore[return-value]

    def fold(self, on_left: Callable[[L], U], on_right: Callable[[R], U]) -> U:
        return on_left(self.value) if self.is_left else on_right(self.value)  # type: ignore[arg-type]

    def get_or_else(self, default: U) -> R | U:
        return self.value if self.is_right else default  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"Left({self.value})" if self.is_left else f"Right({self.value})"


def first_left(results: Iterable[Either[L, R]]) -> Either[L, Tuple[R, ...]]:
    """
    Собирает Right-значения в кортеж; первая ошибка прерывает сборку.
    """
    collected: Tuple[R, ...] = ()
    for result in results:
        if result.is_left:
            return result  # type: ignore[return-value]
        collected = collected + (result.value,)
    return Either.right(collected)
