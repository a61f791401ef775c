import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
from collections import deque
from dataclasses import replace
from datetime import date

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from budgetbook import events
from budgetbook.auth import AuthProvider
from budgetbook.backend import build_backend
from budgetbook.config import Settings
from budgetbook.domain import ACCOUNT_TYPES, BUDGET_PERIODS, SPEND_PERIODS, TRANSACTION_TYPES
from budgetbook.errors import BudgetbookError
from budgetbook.events import EventBus, make_json_mirror, register_default_handlers
from budgetbook.logging_setup import configure_logging
from budgetbook.metrics import (
    budget_status,
    budget_utilization,
    category_spend,
    covering_budget,
    days_until_due,
    expense_total,
    income_total,
    total_balance,
    upcoming_bills,
)
from budgetbook.persistence import Repository
from budgetbook.reports import (
    ReportService,
    default_aggregators,
    default_budget_service,
    monthly_totals,
    transactions_frame,
)
from budgetbook.session import SessionGate
from budgetbook.store import FinanceStore

st.set_page_config(page_title="Budgetbook", layout="wide")


@st.cache_resource
def load_runtime():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings, build_backend(settings)


def run(coro):
    return asyncio.run(coro)


def show_result(result, success: str) -> bool:
    if result.is_left():
        st.error(result.get_error()["message"])
        return False
    st.success(success)
    return True


def dispatch(coro, success: str) -> bool:
    try:
        result = run(coro)
    except BudgetbookError as e:
        st.error(str(e))
        return False
    return show_result(result, success)


settings, backend = load_runtime()

if "gate" not in st.session_state:
    bus = EventBus()
    st.session_state.alerts = deque(maxlen=20)
    register_default_handlers(bus, st.session_state.alerts)
    if settings.mirror_path:
        for name in events.STORE_EVENTS:
            bus.subscribe(name, make_json_mirror(settings.mirror_path))
    st.session_state.gate = SessionGate(
        AuthProvider(backend), Repository(backend), FinanceStore(bus=bus), settings
    )

gate: SessionGate = st.session_state.gate
money = lambda v: f"{v:,.0f} {settings.currency}"

if gate.current_user() is None:
    st.title("💰 Budgetbook")
    tab_in, tab_up = st.tabs(["Sign in", "Register"])
    with tab_in, st.form("sign_in"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Sign in"):
            try:
                run(gate.sign_in(email, password))
                st.rerun()
            except BudgetbookError as e:
                st.error(str(e))
    with tab_up, st.form("sign_up"):
        name = st.text_input("Name")
        email = st.text_input("Email", key="reg_email")
        password = st.text_input("Password", type="password", key="reg_password")
        if st.form_submit_button("Create account"):
            try:
                run(gate.sign_up(email, password, name))
                st.rerun()
            except BudgetbookError as e:
                st.error(str(e))
    st.stop()

service = gate.service
snapshot = service.snapshot
user = gate.current_user()
cat_by_id = {c.id: c for c in snapshot.categories}
acc_by_id = {a.id: a for a in snapshot.accounts}

st.sidebar.markdown(f"### 👤 {user.name}")
st.sidebar.caption(user.email)
if st.sidebar.button("🔄 Refresh"):
    try:
        run(gate.resume())
        st.rerun()
    except BudgetbookError as e:
        st.sidebar.error(str(e))
if st.sidebar.button("Sign out"):
    gate.sign_out()
    st.session_state.alerts.clear()
    st.rerun()

for alert in list(st.session_state.alerts)[-3:]:
    st.sidebar.warning(alert["alert"])

menu = st.sidebar.radio(
    "Menu",
    ["🏠 Dashboard", "🧾 Transactions", "💳 Accounts", "💰 Budgets", "📅 Bills", "📑 Reports", "👤 Profile"],
)

if menu == "🏠 Dashboard":
    k1, k2, k3 = st.columns(3)
    k1.metric("Total Balance", money(total_balance(snapshot)))
    k2.metric("Income", money(income_total(snapshot)))
    k3.metric("Expenses", money(expense_total(snapshot)))

    if snapshot.accounts:
        fig_bal = px.bar(
            x=[a.name for a in snapshot.accounts],
            y=[float(a.balance) for a in snapshot.accounts],
            labels={"x": "Account", "y": f"Balance ({settings.currency})"},
            title="Account Balances",
        )
        st.plotly_chart(fig_bal, use_container_width=True)

    st.subheader("📅 Upcoming Bills")
    due = upcoming_bills(snapshot, settings.upcoming_days)
    if not due:
        st.info(f"No bills due in the next {settings.upcoming_days} days")
    for bill in due:
        days = days_until_due(bill)
        st.write(f"**{bill.name}**: {money(bill.amount)}, due in {days} day(s)")

    st.subheader("Recent Transactions")
    for t in snapshot.transactions[:5]:
        cat = cat_by_id.get(t.category_id)
        sign = "+" if t.type == "income" else "-"
        st.write(f"{t.date} · {cat.name if cat else '-'} · {t.description} · {sign}{money(t.amount)}")

    with st.expander("➕ New category"):
        with st.form("add_category", clear_on_submit=True):
            name = st.text_input("Name", key="new_category_name")
            cat_type = st.selectbox("Type", TRANSACTION_TYPES)
            icon = st.text_input("Icon")
            color = st.color_picker("Color", "#3B82F6")
            if st.form_submit_button("Add Category"):
                if dispatch(service.add_category(name=name, type=cat_type, icon=icon, color=color), "Category added"):
                    st.rerun()

elif menu == "🧾 Transactions":
    st.title("🧾 Transactions")
    with st.form("add_tx", clear_on_submit=True):
        col1, col2 = st.columns(2)
        with col1:
            tx_type = st.selectbox("Type", ["expense", "income"])
            amount = st.number_input("Amount", min_value=0.0, step=1000.0)
            tx_date = st.date_input("Date", value=date.today())
        with col2:
            account = st.selectbox("Account", list(acc_by_id), format_func=lambda i: acc_by_id[i].name)
            category = st.selectbox(
                "Category",
                [c.id for c in snapshot.categories if c.type == tx_type] or list(cat_by_id),
                format_func=lambda i: cat_by_id[i].name,
            )
        description = st.text_input("Description")
        if st.form_submit_button("Add Transaction"):
            dispatch(service.add_transaction(
                account_id=account, category_id=category, amount=amount,
                description=description, date=tx_date, type=tx_type,
            ), "Transaction added")

    df = transactions_frame(snapshot.transactions)
    if df.empty:
        st.info("No transactions yet")
    else:
        df["category"] = df["category_id"].map(lambda i: cat_by_id[i].name if i in cat_by_id else i)
        df["account"] = df["account_id"].map(lambda i: acc_by_id[i].name if i in acc_by_id else i)
        st.dataframe(df[["date", "type", "amount", "category", "account", "description"]])
        st.download_button("⬇ Download CSV", df.to_csv(index=False), file_name="transactions.csv")
        to_delete = st.selectbox("Delete transaction", [""] + list(df["id"]))
        if to_delete and st.button("Delete"):
            if dispatch(service.delete_transaction(to_delete), "Transaction deleted"):
                st.rerun()

elif menu == "💳 Accounts":
    st.title("💳 Accounts")
    cols = st.columns(max(len(snapshot.accounts), 1))
    for col, acc in zip(cols, snapshot.accounts):
        col.metric(f"{acc.name} ({acc.type})", money(acc.balance))
    with st.form("add_account", clear_on_submit=True):
        name = st.text_input("Name")
        acc_type = st.selectbox("Type", ACCOUNT_TYPES)
        balance = st.number_input("Opening balance", step=1000.0)
        if st.form_submit_button("Add Account"):
            if dispatch(service.add_account(name=name, type=acc_type, balance=balance), "Account added"):
                st.rerun()

    if snapshot.accounts:
        st.subheader("Edit account")
        acc_id = st.selectbox("Account", list(acc_by_id), format_func=lambda i: acc_by_id[i].name)
        acc = acc_by_id[acc_id]
        with st.form(f"edit_account_{acc.id}"):
            name = st.text_input("Name", value=acc.name, key=f"acc_name_{acc.id}")
            acc_type = st.selectbox(
                "Type", ACCOUNT_TYPES, index=ACCOUNT_TYPES.index(acc.type), key=f"acc_type_{acc.id}"
            )
            if st.form_submit_button("Save"):
                if dispatch(service.update_account(replace(acc, name=name, type=acc_type)), "Account updated"):
                    st.rerun()
        if st.button("Delete account", key=f"del_account_{acc.id}"):
            if dispatch(service.delete_account(acc.id), f"{acc.name} deleted"):
                st.rerun()

elif menu == "💰 Budgets":
    st.title("💰 Budgets")
    expense_cats = [c.id for c in snapshot.categories if c.type == "expense"]
    with st.form("add_budget", clear_on_submit=True):
        category = st.selectbox("Category", expense_cats, format_func=lambda i: cat_by_id[i].name)
        amount = st.number_input("Amount", min_value=0.0, step=100000.0)
        period = st.selectbox("Period", BUDGET_PERIODS, index=1)
        start = st.date_input("Start", value=date.today().replace(day=1))
        end = st.date_input("End", value=date.today())
        if st.form_submit_button("Add Budget"):
            existing = covering_budget(snapshot, category, period, start.isoformat(), end.isoformat())
            if existing is not None:
                st.warning(f"A {period} budget for this category already covers {existing.start_date} to {existing.end_date}")
            dispatch(service.add_budget(
                category_id=category, amount=amount, period=period, start_date=start, end_date=end,
            ), "Budget added")

    overview = default_budget_service().overview(snapshot)
    for warning in overview["result"].get("warnings", []):
        st.warning(warning)
    for b in snapshot.budgets:
        usage = budget_utilization(snapshot, b)
        cat = cat_by_id.get(b.category_id)
        status = {"ok": "🟢", "warning": "🟡", "over": "🔴"}[budget_status(usage.percentage)]
        st.metric(
            f"{status} {cat.name if cat else b.category_id} ({b.start_date} to {b.end_date})",
            f"{money(usage.spent)} / {money(b.amount)}",
            f"{money(usage.remaining)} remaining",
        )
        st.progress(min(usage.percentage, 100.0) / 100)

elif menu == "📅 Bills":
    st.title("📅 Bills")
    active = [b for b in snapshot.bills if b.is_active]
    inactive = [b for b in snapshot.bills if not b.is_active]
    for heading, bills in (("Active", active), ("Inactive", inactive)):
        st.subheader(f"{heading} ({len(bills)})")
        for bill in bills:
            c1, c2, c3, c4 = st.columns([3, 2, 1, 1])
            c1.write(f"**{bill.name}**: {money(bill.amount)}, day {bill.due_date}")
            c2.caption(f"Last paid: {bill.last_paid_date or 'never'}")
            if bill.is_active and c3.button("Pay", key=f"pay_{bill.id}"):
                if dispatch(service.pay_bill(bill.id), f"{bill.name} paid"):
                    st.rerun()
            if c4.button("Delete", key=f"del_bill_{bill.id}"):
                if dispatch(service.delete_bill(bill.id), f"{bill.name} deleted"):
                    st.rerun()
            with st.expander(f"Edit {bill.name}"):
                with st.form(f"edit_bill_{bill.id}"):
                    name = st.text_input("Name", value=bill.name, key=f"bill_name_{bill.id}")
                    amount = st.number_input(
                        "Amount", min_value=0.0, value=float(bill.amount), step=10000.0,
                        key=f"bill_amount_{bill.id}",
                    )
                    due_day = st.number_input(
                        "Due day", min_value=1, max_value=31, value=bill.due_date,
                        key=f"bill_due_{bill.id}",
                    )
                    is_active = st.checkbox("Active", value=bill.is_active, key=f"bill_active_{bill.id}")
                    if st.form_submit_button("Save"):
                        changed = replace(
                            bill, name=name, amount=amount, due_date=int(due_day), is_active=is_active,
                        )
                        if dispatch(service.update_bill(changed), "Bill updated"):
                            st.rerun()

    st.subheader("Add bill")
    with st.form("add_bill", clear_on_submit=True):
        name = st.text_input("Name")
        amount = st.number_input("Amount", min_value=0.0, step=10000.0)
        due_day = st.number_input("Due day", min_value=1, max_value=31, value=1)
        account = st.selectbox("Account", list(acc_by_id), format_func=lambda i: acc_by_id[i].name)
        category = st.selectbox(
            "Category", [c.id for c in snapshot.categories if c.type == "expense"],
            format_func=lambda i: cat_by_id[i].name,
        )
        if st.form_submit_button("Add Bill"):
            dispatch(service.add_bill(
                name=name, amount=amount, due_date=due_day, account_id=account, category_id=category,
            ), "Bill added")

elif menu == "📑 Reports":
    st.title("📑 Reports")
    period = st.selectbox("Time range", list(SPEND_PERIODS) + ["all"], index=1)
    report = ReportService(default_aggregators()).period_report(
        snapshot, None if period == "all" else period
    )
    result = report["result"]
    k1, k2, k3 = st.columns(3)
    k1.metric("Income", money(result["income"]))
    k2.metric("Expenses", money(result["expense"]))
    k3.metric("Net", money(result["net"]))

    col1, col2 = st.columns(2)
    for col, key, title in (
        (col1, "income_by_category", "Income by Category"),
        (col2, "expense_by_category", "Expenses by Category"),
    ):
        data = result[key]
        if data:
            fig = px.pie(values=[float(v) for v in data.values()], names=list(data), title=title)
            col.plotly_chart(fig, use_container_width=True)

    st.subheader("Top Spending")
    top = pd.DataFrame(result["top_spending"], columns=["Category", "Amount"])
    st.table(top)

    if period != "all":
        st.caption(
            " · ".join(
                f"{c.name}: {money(category_spend(snapshot, c.id, period))}"
                for c in snapshot.categories if c.type == "expense"
            )
        )

    months = monthly_totals(snapshot.transactions)
    fig_ts = go.Figure()
    fig_ts.add_trace(go.Scatter(x=list(months.index), y=months["income"], mode="lines+markers", name="Income"))
    fig_ts.add_trace(go.Scatter(x=list(months.index), y=months["expense"], mode="lines+markers", name="Expense"))
    st.plotly_chart(fig_ts, use_container_width=True)

elif menu == "👤 Profile":
    st.title("👤 Profile")
    with st.form("profile"):
        name = st.text_input("Name", value=user.name)
        if st.form_submit_button("Save"):
            try:
                gate.auth.update_profile(name)
                st.success("Profile updated")
            except BudgetbookError as e:
                st.error(str(e))
    st.caption(f"Member since {user.created_at[:10]}")
