"""
app.py
Streamlit front-end for the tutoring ledger (clients, subscriptions, lessons, income).
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
from concurrent.futures import wait
from dataclasses import dataclass
from datetime import date

import pandas as pd
import streamlit as st

import backup
import events
import utils
from clients import ClientRegistry
from config import Settings, load_settings
from db import Store, open_store
from income import ExtraIncomeLedger, IncomeAggregator
from lessons import LessonEngine
from models import Client
from subscriptions import SubscriptionManager

st.set_page_config(page_title="Abonementus", layout="wide")


@dataclass
class Services:
    settings: Settings
    store: Store
    bus: events.EventBus
    clients: ClientRegistry
    subscriptions: SubscriptionManager
    lessons: LessonEngine
    income: IncomeAggregator
    ledger: ExtraIncomeLedger


@st.cache_resource
def init_once() -> Services:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = open_store(settings.db_file, enforce_foreign_keys=settings.enforce_foreign_keys)
    bus = events.EventBus()
    clients = ClientRegistry(store, bus, fetch_timeout=settings.fetch_timeout)
    clients.refresh_on_changes()
    return Services(
        settings=settings,
        store=store,
        bus=bus,
        clients=clients,
        subscriptions=SubscriptionManager(store, bus),
        lessons=LessonEngine(store, bus),
        income=IncomeAggregator(store),
        ledger=ExtraIncomeLedger(store, bus),
    )


def show_result(result, success: str) -> bool:
    if result.ok:
        st.success(success)
    else:
        st.error(f"Operation failed: {result.error}")
    return result.ok


def loaded_clients(svc: Services) -> list[Client]:
    """Client list from the background fetch; waits up to the fetch timeout on first use."""
    future = svc.clients.fetch_clients() or svc.clients.current_fetch
    if future is not None and not future.done():
        with st.spinner("Loading clients..."):
            wait([future], timeout=svc.settings.fetch_timeout)
    return svc.clients.clients


def client_options(svc: Services) -> dict[str, int]:
    return {f"{c.full_name} - ID {c.id}": c.id for c in loaded_clients(svc)}


def money(value: float) -> str:
    return f"{value:,.2f}"


def dashboard_page(svc: Services):
    st.header("📊 Dashboard")

    c1, c2, c3 = st.columns(3)
    c1.metric("Completed this month", money(svc.income.completed_amount_for_current_month().value))
    c2.metric("Pending lessons", money(svc.income.pending_amount().value))
    c3.metric("Extra income this month", money(svc.income.extra_income_for_current_month().value))

    st.divider()

    st.subheader("Active subscriptions")
    active = svc.subscriptions.active_subscriptions().value
    if active:
        names = {c.id: c.full_name for c in loaded_clients(svc)}
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "id": s.id,
                        "client": names.get(s.client_id, s.client_id),
                        "progress": s.progress_description,
                        "status": s.status_tag,
                        "expires": s.closed_at,
                    }
                    for s in active
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No active subscriptions.")


def client_form(svc: Services, existing: Client | None = None):
    st.subheader(f"✏️ Edit client (ID: {existing.id})" if existing else "➕ Add client")

    col1, col2 = st.columns(2)
    with col1:
        first_name = st.text_input("First name", value=existing.first_name if existing else "")
        last_name = st.text_input("Last name", value=(existing.last_name or "") if existing else "")
        phone = st.text_input("Phone", value=(existing.phone or "") if existing else "")
    with col2:
        telegram = st.text_input("Telegram", value=(existing.telegram or "") if existing else "")
        email = st.text_input("Email", value=(existing.email or "") if existing else "")
        info = st.text_area("Additional info", value=(existing.additional_info or "") if existing else "")

    errors = utils.validate_client_inputs(first_name)
    for e in errors:
        st.error(e)

    if st.button("Save", type="primary", disabled=bool(errors)):
        client = Client(
            id=existing.id if existing else None,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            telegram=telegram,
            email=email,
            additional_info=info,
        )
        if existing:
            ok = show_result(svc.clients.update_client(client), "Client updated.")
        else:
            ok = show_result(svc.clients.create_client(client), "Client added.")
        if ok:
            st.rerun()


def clients_page(svc: Services):
    st.header("👥 Clients")

    clients = loaded_clients(svc)
    df = utils.records_to_frame(clients, ["id", "first_name", "last_name", "phone", "telegram", "email"])
    st.dataframe(df, use_container_width=True, hide_index=True)

    options = {f"{c.full_name} - ID {c.id}": c.id for c in clients}
    selected = st.selectbox("Client", ["(new)"] + list(options.keys()))

    if selected == "(new)":
        client_form(svc)
        return

    existing = svc.clients.get_client(options[selected]).value
    if existing is None:
        st.warning("Client no longer exists.")
        return
    client_form(svc, existing)

    st.divider()
    delete_confirm = st.checkbox("Confirm delete (removes subscriptions and lessons)", value=False)
    if st.button("Delete client", disabled=not delete_confirm):
        if show_result(svc.clients.delete_client(existing.id), "Client deleted."):
            st.rerun()


def subscriptions_page(svc: Services):
    st.header("🎫 Subscriptions")

    options = client_options(svc)
    if not options:
        st.info("No clients yet. Add a client first.")
        return

    st.subheader("New subscription")
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        label = st.selectbox("Client", list(options.keys()))
    with c2:
        lesson_count = st.text_input("Lessons", value="8")
    with c3:
        total_price = st.text_input("Total price", value="8000")
    with c4:
        start = st.date_input("Start date", value=date.today())

    client_id = options[label]
    if st.button("Create subscription", type="primary"):
        errors = utils.validate_subscription_inputs(client_id, lesson_count, total_price, start)
        if errors:
            for e in errors:
                st.error(e)
        else:
            result = svc.subscriptions.create_subscription(
                client_id, int(lesson_count), float(total_price), start_date=utils.as_datetime(start)
            )
            if show_result(result, "Subscription created."):
                st.rerun()

    st.divider()

    for sub in svc.subscriptions.subscriptions_for_client(client_id).value:
        with st.expander(f"#{sub.id} · {sub.progress_description} · {sub.status_tag} · {money(sub.total_price)}"):
            for lesson in svc.subscriptions.lessons_for(sub.id).value:
                col_a, col_b = st.columns([3, 1])
                col_a.write(f"Lesson {lesson.number}: {money(lesson.price)} · conducted {lesson.conducted_at or '-'}")
                if lesson.is_completed:
                    if col_b.button("Undo", key=f"undo-{lesson.id}"):
                        svc.lessons.uncomplete_lesson(lesson)
                        st.rerun()
                elif col_b.button("Complete", key=f"done-{lesson.id}"):
                    svc.lessons.complete_lesson(lesson)
                    st.rerun()
            if st.button("Delete subscription", key=f"del-sub-{sub.id}"):
                if show_result(svc.subscriptions.delete_subscription(sub.id), "Subscription deleted."):
                    st.rerun()


def lessons_page(svc: Services):
    st.header("📚 Single lessons")

    options = client_options(svc)
    if not options:
        st.info("No clients yet. Add a client first.")
        return

    c1, c2, c3 = st.columns(3)
    with c1:
        label = st.selectbox("Client", list(options.keys()))
    with c2:
        price = st.text_input("Price", value="1000")
    with c3:
        lesson_date = st.date_input("Lesson date", value=date.today())

    client_id = options[label]
    if st.button("Record lesson", type="primary"):
        errors = utils.validate_lesson_inputs(client_id, price, lesson_date)
        if errors:
            for e in errors:
                st.error(e)
        else:
            result = svc.lessons.create_standalone_lesson(client_id, float(price), conducted_at=utils.as_datetime(lesson_date))
            if show_result(result, "Lesson recorded."):
                st.rerun()

    st.divider()

    lessons = [l for l in svc.lessons.lessons_for_client(client_id).value if l.is_standalone]
    for lesson in lessons:
        col_a, col_b, col_c = st.columns([3, 1, 1])
        col_a.write(f"#{lesson.number} · {money(lesson.price)} · {lesson.conducted_at or 'pending'}")
        if lesson.is_completed:
            if col_b.button("Undo", key=f"undo-{lesson.id}"):
                svc.lessons.uncomplete_lesson(lesson)
                st.rerun()
        elif col_b.button("Complete", key=f"done-{lesson.id}"):
            svc.lessons.complete_lesson(lesson)
            st.rerun()
        if col_c.button("Delete", key=f"del-{lesson.id}"):
            svc.lessons.delete_lesson(lesson.id)
            st.rerun()


def extra_income_page(svc: Services):
    st.header("💰 Extra income")

    with st.sidebar:
        st.subheader("Categories")
        new_name = st.text_input("New category")
        if st.button("Add category"):
            show_result(svc.ledger.create_category(new_name), "Category added.")

    categories = {c.name: c.id for c in svc.ledger.list_categories().value}
    if not categories:
        st.info("Create a category in the sidebar first.")
        return

    c1, c2, c3 = st.columns(3)
    with c1:
        category = st.selectbox("Category", list(categories.keys()))
    with c2:
        amount = st.text_input("Amount", value="500")
    with c3:
        received = st.date_input("Received", value=date.today())

    if st.button("Record income", type="primary"):
        errors = utils.validate_income_inputs(categories[category], amount)
        if errors:
            for e in errors:
                st.error(e)
        elif show_result(
            svc.ledger.create_income(categories[category], float(amount), utils.as_datetime(received)),
            "Income recorded.",
        ):
            st.rerun()

    names = {v: k for k, v in categories.items()}
    incomes = svc.ledger.list_incomes().value
    if incomes:
        st.dataframe(
            pd.DataFrame(
                [{"id": i.id, "category": names.get(i.category_id), "amount": i.amount, "received": i.received_at} for i in incomes]
            ),
            use_container_width=True,
            hide_index=True,
        )


def history_page(svc: Services):
    st.header("🗓️ History")

    years = svc.income.monthly_history().value
    if not years:
        st.caption("No completed lessons yet.")
        return

    for year in years:
        st.subheader(f"{year.year} · total {money(year.total)}")
        st.dataframe(
            pd.DataFrame(
                [
                    {"month": m.month, "lessons": m.lesson_amount, "extra": m.extra_amount, "total": m.total}
                    for m in year.months
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )


def settings_page(svc: Services):
    st.header("⚙️ Settings")

    st.subheader("Backup")
    st.caption(f"Archives are written to {svc.settings.export_dir}")
    if st.button("Export database"):
        if backup.export_database(svc.store, svc.settings.export_dir):
            st.success("Backup written.")
        else:
            st.error("Backup failed, see the log.")

    st.divider()

    st.subheader("Export to CSV")
    st.download_button(
        "Download clients.csv",
        data=utils.clients_to_csv_bytes(svc.clients.list_clients().value),
        file_name="clients.csv",
        mime="text/csv",
    )
    st.download_button(
        "Download lessons.csv",
        data=utils.lessons_to_csv_bytes(svc.lessons.fetch_lessons().value),
        file_name="lessons.csv",
        mime="text/csv",
    )

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 2 sample clients, a subscription and a few lessons (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(svc.clients, svc.subscriptions, svc.lessons)
        st.success("Sample data inserted.")
        st.rerun()


def main_app(svc: Services):
    st.sidebar.title("🎓 Abonementus")

    pages = {
        "Dashboard": dashboard_page,
        "Clients": clients_page,
        "Subscriptions": subscriptions_page,
        "Lessons": lessons_page,
        "Extra income": extra_income_page,
        "History": history_page,
        "Settings": settings_page,
    }
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    names = list(pages.keys())
    st.session_state.page = st.sidebar.radio("Navigate", names, index=names.index(st.session_state.page))

    pages[st.session_state.page](svc)


# --------- App entry ---------

def run():
    svc = init_once()
    if not svc.store.available:
        st.error("Could not open the database. Check ABONEMENTUS_DB and the log.")
        return
    main_app(svc)


if __name__ == "__main__":
    run()
