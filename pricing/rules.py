from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from .domain import Coupon, DiscountRule, DiscountType
from .money import ZERO, percent_of

TimedRule = Union[DiscountRule, Coupon]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Наивные даты из хранилища считаем UTC"""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def within_window(rule: TimedRule, now: Optional[datetime] = None) -> bool:
    """now попадает в [starts_at, ends_at]; ends_at не задан - бессрочно"""
    moment = as_utc(now or utc_now())
    if rule.starts_at is not None and moment < as_utc(rule.starts_at):
        return False
    if rule.ends_at is not None and moment > as_utc(rule.ends_at):
        return False
    return True


def is_live(rule: TimedRule, now: Optional[datetime] = None) -> bool:
    return rule.is_active and within_window(rule, now)


def discount_amount(discount_type: DiscountType, value: Decimal, base: Decimal) -> Decimal:
    """Размер скидки от базы без округления"""
    match discount_type:
        case DiscountType.PERCENTAGE:
            return percent_of(base, value)
        case DiscountType.FIXED_AMOUNT:
            return value
    return ZERO
