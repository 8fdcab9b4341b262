import sys
import os
import asyncio
import logging
import uuid

import streamlit as st

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from pricing.config import load_settings
from pricing.catalog import InMemoryStore, live_discounts, load_seed
from pricing.cart import (
    cart_count,
    dumps_cart,
    line_from_product,
    line_savings,
    loads_cart,
    storage_key,
)
from pricing.events import create_checkout_event_bus, create_event
from pricing.money import format_currency
from pricing.prices import priced_entity, resolve_price
from pricing.service import CheckoutService, recompute
from Order_Service.orders import (
    invoice_lines,
    place_order,
    validate_address,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

settings = load_settings()


# ============ Кэширование данных ============
@st.cache_data
def get_data():
    return load_seed(os.path.join(os.path.dirname(__file__), "..", settings.seed_path))


@st.cache_resource
def get_event_bus():
    return create_checkout_event_bus()


# хранилище живёт между перезапусками скрипта: в нём счётчики купонов
@st.cache_resource
def get_store():
    return InMemoryStore.from_seed(get_data())


st.set_page_config(
    page_title="Storefront Checkout",
    page_icon="🛒",
    layout="wide",
    initial_sidebar_state="expanded",
)

data = get_data()
store = get_store()
service = CheckoutService(store, settings)
bus = get_event_bus()
CART_KEY = storage_key(data.store_id, settings.cart_key_prefix)

# ============ Инициализация сессии ============
# session_state играет роль localStorage витрины
if CART_KEY not in st.session_state:
    st.session_state[CART_KEY] = dumps_cart(())

if "checkout" not in st.session_state:
    restored = loads_cart(st.session_state[CART_KEY])
    state = service.start(
        data.store_id,
        restored,
        discount_rules=data.discounts,
        tax_rules=data.taxes,
        shipping_rules=data.shipping,
    )
    # сверка корзины один раз на активацию магазина
    refreshed = asyncio.run(service.refresh_cart(state))
    st.session_state.checkout = refreshed.get_or_else(state)
    st.session_state.refresh_error = None if refreshed.is_right else refreshed.value.message

if "orders" not in st.session_state:
    st.session_state.orders = []


def money(amount) -> str:
    return format_currency(amount, data.currency)


def publish(name: str, payload: dict) -> None:
    """Событие -> новое состояние; итоги пересчитываются при отрисовке"""
    st.session_state.checkout = bus.publish(create_event(name, payload), st.session_state.checkout)
    st.session_state[CART_KEY] = dumps_cart(st.session_state.checkout.cart)


# ============ HEADER ============
st.title("🛒 Storefront Checkout")

with st.sidebar:
    st.header("📂 Навигация")
    page = st.radio(
        "Раздел:",
        ["🏪 Каталог", "🛒 Корзина", "💳 Оформление", "🧾 Заказы"],
        label_visibility="collapsed",
    )
    st.divider()
    st.metric("Товаров в корзине", cart_count(st.session_state.checkout.cart))
    if st.session_state.refresh_error:
        st.warning(st.session_state.refresh_error)


# ============ PAGE: КАТАЛОГ ============
if page == "🏪 Каталог":
    st.header("🏪 Каталог")
    rules = live_discounts(data.discounts)

    for product in data.products:
        options = {"Не выбрано": None} | {v.title: v for v in product.variants}
        with st.container():
            cols = st.columns([4, 3, 2, 2])
            with cols[0]:
                st.markdown(f"**{product.name}**")
                choice = (
                    st.selectbox("Вариант", list(options)[1:], key=f"var_{product.id}")
                    if product.variants
                    else "Не выбрано"
                )
            variant = options[choice]
            price = resolve_price(priced_entity(product, variant), rules)
            with cols[1]:
                if price.has_discount:
                    st.markdown(
                        f"**{money(price.final_price)}** ~~{money(price.compare_price)}~~ "
                        f"(-{price.discount_pct}%)"
                    )
                    if price.discount_label:
                        st.caption(f"🏷️ {price.discount_label}")
                else:
                    st.markdown(f"**{money(price.final_price)}**")
            with cols[2]:
                qty = st.number_input(
                    "Кол-во", min_value=1, value=1, key=f"qty_{product.id}",
                    label_visibility="collapsed",
                )
            with cols[3]:
                if st.button("➕ В корзину", key=f"add_{product.id}"):
                    line = line_from_product(product, variant, rules, quantity=int(qty))
                    publish("ADD_TO_CART", {"line": line})
                    st.success(f"✅ {line.name} × {qty}")
            st.divider()


# ============ PAGE: КОРЗИНА ============
elif page == "🛒 Корзина":
    st.header("🛒 Корзина")
    state = st.session_state.checkout

    if st.button("🔄 Обновить цены"):
        refreshed = asyncio.run(service.refresh_cart(state))
        if refreshed.is_right:
            st.session_state.checkout = refreshed.value
            st.session_state[CART_KEY] = dumps_cart(refreshed.value.cart)
            st.session_state.refresh_error = None
            st.rerun()
        else:
            st.error(refreshed.value.message)

    if not state.cart:
        st.info("🛍️ Корзина пуста")
    else:
        for line in state.cart:
            cols = st.columns([5, 2, 2, 1])
            with cols[0]:
                st.write(f"**{line.name}**")
                if line_savings(line) > 0:
                    st.caption(f"Экономия {money(line_savings(line))}")
            with cols[1]:
                qty = st.number_input(
                    "Кол-во", min_value=1, max_value=line.max_stock or None,
                    value=line.quantity, key=f"cart_{line.product_id}_{line.variant_id}",
                    label_visibility="collapsed",
                )
                if qty != line.quantity:
                    publish("UPDATE_QUANTITY", {
                        "product_id": line.product_id,
                        "variant_id": line.variant_id,
                        "quantity": int(qty),
                    })
                    st.rerun()
            with cols[2]:
                st.write(money(line.line_total))
            with cols[3]:
                if st.button("🗑️", key=f"rm_{line.product_id}_{line.variant_id}"):
                    publish("REMOVE", {"product_id": line.product_id, "variant_id": line.variant_id})
                    st.rerun()

        summary = recompute(state, settings=settings)
        st.markdown(f"### Подытог: **{money(summary.totals.subtotal)}**")


# ============ PAGE: ОФОРМЛЕНИЕ ============
elif page == "💳 Оформление":
    st.header("💳 Оформление заказа")
    state = st.session_state.checkout

    if not state.cart:
        st.info("Корзина пуста")
        st.stop()

    col_form, col_summary = st.columns([3, 2])

    with col_form:
        st.subheader("Адрес")
        address = {
            "firstName": st.text_input("Имя"),
            "lastName": st.text_input("Фамилия"),
            "address1": st.text_input("Адрес"),
            "city": st.text_input("Город"),
            "zip": st.text_input("Индекс"),
            "phone": st.text_input("Телефон"),
        }
        email = st.text_input("Email")
        country = st.selectbox("Страна", ("Не выбрано",) + data.countries)
        new_country = None if country == "Не выбрано" else country
        if new_country != state.country:
            publish("COUNTRY_CHANGED", {"country": new_country})
            state = st.session_state.checkout

        st.subheader("Доставка")
        options = service.shipping_options(state)
        if options:
            labels = {f"{o.name} - {money(o.cost)}": o for o in options}
            picked = labels[st.radio("Способ", list(labels))]
            if state.shipping_rate is None or state.shipping_rate.id != picked.id:
                publish("SHIPPING_SELECTED", {"rate": picked})
                state = st.session_state.checkout
            for part in picked.breakdown:
                st.caption(f"{part.name}: {money(part.cost)} {part.note}")
            if picked.warning:
                st.warning(picked.warning)
        else:
            st.warning("Нет доступных способов доставки")

        st.subheader("Купон")
        code = st.text_input("Код купона")
        c1, c2 = st.columns(2)
        with c1:
            if st.button("Применить"):
                _, result = asyncio.run(service.apply_coupon(state, code))
                if result.is_valid:
                    publish("COUPON_APPLIED", {"coupon": result.coupon})
                    st.success(f"Купон {result.coupon.code} применён")
                else:
                    st.error(result.error.message)
                state = st.session_state.checkout
        with c2:
            if state.coupon is not None and st.button("Убрать купон"):
                publish("COUPON_REMOVED", {})
                state = st.session_state.checkout

        payment = st.radio("Оплата", ["manual", "cod"], horizontal=True)

    summary = service.summary(state)
    totals = summary.totals

    with col_summary:
        st.subheader("Итого")
        for label, amount in invoice_lines(totals):
            st.write(f"{label}: **{money(amount)}**")
        if summary.order_discount.name:
            st.caption(f"🏷️ {summary.order_discount.name}")
        if summary.coupon_result is not None and not summary.coupon_result.is_valid:
            st.warning(summary.coupon_result.error.message)

        if st.button("✅ Оформить заказ", type="primary", use_container_width=True):
            for error in validate_address({**address, "email": email}):
                st.error(f"{error.field}: {error.message}")
            coupon_ok = summary.coupon_result is not None and summary.coupon_result.is_valid
            placed = place_order(
                data.store_id, email, address, state.cart, totals, summary.shipping_rate,
                state.coupon.code if coupon_ok else None, payment,
            )
            if placed.is_right:
                order_id = str(uuid.uuid4())
                st.session_state.orders.append({"id": order_id, **placed.value, "totals": totals})
                if coupon_ok:
                    asyncio.run(service.record_coupon_usage(state, order_id))
                publish("CLEAR_CART", {})
                st.success(f"🎉 Заказ оформлен! Сумма: {money(totals.total)}")
                st.balloons()
            else:
                st.error(placed.value.message)


# ============ PAGE: ЗАКАЗЫ ============
elif page == "🧾 Заказы":
    st.header("🧾 Заказы")
    if not st.session_state.orders:
        st.info("Заказов пока нет")
    for order in reversed(st.session_state.orders):
        with st.expander(f"Invoice #{order['id'][:8]} - {money(order['total'])}"):
            for item in order["items"]:
                price = f"{money(item['price'])}"
                if "original_price" in item:
                    price += f" ~~{money(item['original_price'])}~~"
                st.write(f"{item['name']} × {item['quantity']} - {price}")
            st.divider()
            for label, amount in invoice_lines(order["totals"]):
                st.write(f"{label}: {money(amount)}")
