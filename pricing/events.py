import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Callable, Dict, Tuple

from .cart import add_to_cart, remove_from_cart, update_quantity
from .service import CheckoutState


@dataclass(frozen=True)
class Event:
    id: str
    ts: str
    name: str
    payload: Dict


Handler = Callable[[Event, CheckoutState], CheckoutState]


@dataclass(frozen=True)
class EventBus:
    """
    Иммутабельная шина событий оформления заказа.
    Обработчики - чистые функции (Event, CheckoutState) -> CheckoutState.
    Итоги шина не считает: после publish вызывающий делает recompute(state).
    """

    subscribers: Tuple[Tuple[str, Handler], ...] = ()

    def subscribe(self, event_name: str, handler: Handler) -> "EventBus":
        return EventBus(subscribers=self.subscribers + ((event_name, handler),))

    def publish(self, event: Event, state: CheckoutState) -> CheckoutState:
        handlers = tuple(h for name, h in self.subscribers if name == event.name)
        return reduce(lambda current, handler: handler(event, current), handlers, state)


def create_event(name: str, payload: Dict) -> Event:
    return Event(
        id=str(uuid.uuid4()),
        ts=datetime.now().isoformat(),
        name=name,
        payload=payload,
    )


# ============ Обработчики ============


def handle_add_to_cart(event: Event, state: CheckoutState) -> CheckoutState:
    """payload: {"line": CartLine}"""
    return replace(state, cart=add_to_cart(state.cart, event.payload["line"]))


def handle_update_quantity(event: Event, state: CheckoutState) -> CheckoutState:
    payload = event.payload
    cart = update_quantity(
        state.cart, payload["product_id"], payload.get("variant_id"), payload["quantity"]
    )
    return replace(state, cart=cart)


def handle_remove_from_cart(event: Event, state: CheckoutState) -> CheckoutState:
    payload = event.payload
    return replace(
        state, cart=remove_from_cart(state.cart, payload["product_id"], payload.get("variant_id"))
    )


def handle_clear_cart(event: Event, state: CheckoutState) -> CheckoutState:
    return replace(state, cart=(), coupon=None, shipping_rate=None)


def handle_country_changed(event: Event, state: CheckoutState) -> CheckoutState:
    return replace(state, country=event.payload.get("country"))


def handle_shipping_selected(event: Event, state: CheckoutState) -> CheckoutState:
    """payload: {"rate": ShippingRate | None}"""
    return replace(state, shipping_rate=event.payload.get("rate"))


def handle_coupon_applied(event: Event, state: CheckoutState) -> CheckoutState:
    """payload: {"coupon": Coupon} - купон уже прошёл validate_coupon"""
    return replace(state, coupon=event.payload["coupon"])


def handle_coupon_removed(event: Event, state: CheckoutState) -> CheckoutState:
    return replace(state, coupon=None)


def create_checkout_event_bus() -> EventBus:
    bus = EventBus()
    bus = bus.subscribe("ADD_TO_CART", handle_add_to_cart)
    bus = bus.subscribe("UPDATE_QUANTITY", handle_update_quantity)
    bus = bus.subscribe("REMOVE", handle_remove_from_cart)
    bus = bus.subscribe("CLEAR_CART", handle_clear_cart)
    bus = bus.subscribe("COUNTRY_CHANGED", handle_country_changed)
    bus = bus.subscribe("SHIPPING_SELECTED", handle_shipping_selected)
    bus = bus.subscribe("COUPON_APPLIED", handle_coupon_applied)
    bus = bus.subscribe("COUPON_REMOVED", handle_coupon_removed)
    return bus


def apply_events(bus: EventBus, events: Tuple[Event, ...], state: CheckoutState) -> CheckoutState:
    return reduce(lambda s, e: bus.publish(e, s), events, state)
