"""
Streamlit Frontend for the Shared Ledger

The page both participants open on their phones.

DESIGN PRINCIPLES:
1. The balance is the first thing on screen
2. Deleting and clearing need an explicit second click
3. Errors stay visible until retried or dismissed
4. No hidden actions

The UI is a thin layer: every button calls one LedgerController intent and
shows the returned outcome. The controller runs on one background event loop
shared by all reruns, so its change subscription outlives a single rerun.
"""

import asyncio
import atexit
import threading

import streamlit as st

from shared_ledger.config import get_settings, validate_all_settings
from shared_ledger.controller import LedgerController, create_ledger_controller
from shared_ledger.engine import (
    EventClassifier,
    UnclassifiableEventError,
    describe_balance,
    format_amount,
    format_timestamp,
)
from shared_ledger.models import EventKind, MonetaryEvent, MutationOutcome


# Page configuration
st.set_page_config(
    page_title="Shared Expenses",
    page_icon="💸",
    layout="centered",
)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop for the controller and its subscription."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="ledger-loop", daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


@st.cache_resource
def get_controller() -> LedgerController:
    """Get or create the started controller (cached)."""
    controller = create_ledger_controller(use_storage=True)
    run_async(controller.start())
    atexit.register(lambda: run_async(controller.close()))
    return controller


def remember(outcome: MutationOutcome) -> None:
    """Keep an outcome so the next rerun can show it."""
    st.session_state.notice = outcome


def show_notice() -> None:
    outcome = st.session_state.pop("notice", None)
    if outcome is None:
        return
    if outcome.ok:
        if outcome.message:
            st.toast(outcome.message)
    else:
        st.error(outcome.message)


# Button callbacks run before the rerun, so they may reset widget state.

def on_add(controller: LedgerController, participant: str) -> None:
    controller.amount_input = st.session_state.get("amount_input", "")
    remember(run_async(controller.add_expense(participant)))
    st.session_state.amount_input = controller.amount_input


def on_settle(controller: LedgerController) -> None:
    remember(run_async(controller.settle_up(st.session_state.get("settle_amount"))))


def on_start_edit(controller: LedgerController, event_id: str) -> None:
    remember(controller.start_edit(event_id))
    st.session_state.edit_draft = controller.interaction.draft


def on_save_edit(controller: LedgerController) -> None:
    controller.update_edit_draft(st.session_state.get("edit_draft", ""))
    remember(run_async(controller.save_edit()))


def on_request_delete(controller: LedgerController, event_id: str) -> None:
    remember(controller.request_delete(event_id))


def on_confirm_delete(controller: LedgerController) -> None:
    remember(run_async(controller.confirm_delete()))


def on_confirm_clear(controller: LedgerController) -> None:
    remember(run_async(controller.confirm_clear()))


def main():
    """Main application entry point."""
    controller = get_controller()
    symbol = get_settings().ledger.currency_symbol
    view = controller.view
    summary = controller.summary
    first, second = controller.roster.participants

    show_notice()

    if view.fetch_error:
        st.error(view.fetch_error)
        col1, col2 = st.columns(2)
        col1.button("Retry", on_click=lambda: run_async(controller.refresh()))
        col2.button("Dismiss", on_click=controller.dismiss_error)

    if summary.has_unclassified:
        st.warning(
            f"{len(summary.unclassified)} entries could not be attributed to "
            f"{first} or {second} and are not counted."
        )

    # Totals and balance
    col1, col2 = st.columns(2)
    col1.metric(f"{first} paid", format_amount(summary.shared_total(first), symbol))
    col2.metric(f"{second} paid", format_amount(summary.shared_total(second), symbol))

    if summary.is_settled:
        st.success("All settled up! 🎉")
    else:
        st.warning(describe_balance(summary, symbol))
        st.number_input(
            "Reimbursed amount",
            min_value=0.01,
            value=float(summary.magnitude),
            step=0.01,
            format="%.2f",
            key="settle_amount",
        )
        st.button(
            f"{summary.debtor} pays back {summary.receiver}",
            on_click=on_settle,
            args=(controller,),
            type="primary",
        )

    # New expense
    st.subheader("New expense")
    st.text_input("Amount", key="amount_input", placeholder=f"Amount in {symbol}")
    col1, col2 = st.columns(2)
    col1.button(f"+ {first}", on_click=on_add, args=(controller, first), use_container_width=True)
    col2.button(f"+ {second}", on_click=on_add, args=(controller, second), use_container_width=True)

    # History
    header, refresh = st.columns([4, 1])
    header.subheader(f"History ({len(view.events)})")
    refresh.button("🔄", on_click=lambda: run_async(controller.refresh()))

    if not view.events:
        st.caption("No expenses recorded yet")
    for event in view.events:
        render_event_row(controller, event, symbol)

    # Clear everything
    st.divider()
    if controller.interaction.is_confirming_clear:
        st.write("Are you sure you want to delete everything?")
        col1, col2 = st.columns(2)
        col1.button("Cancel", on_click=controller.cancel_clear, key="clear_cancel")
        col2.button("Confirm", on_click=on_confirm_clear, args=(controller,), type="primary")
    else:
        st.button("Clear the ledger", on_click=controller.request_clear)

    with st.expander("Connection status"):
        for name, ok in validate_all_settings().items():
            if name.endswith("_error"):
                continue
            st.write(f"{'✅' if ok else '❌'} {name}")


def render_event_row(controller: LedgerController, event: MonetaryEvent, symbol: str) -> None:
    state = controller.interaction
    classifier = EventClassifier(controller.roster)

    with st.container(border=True):
        if state.is_editing(event.id):
            st.text_input("New amount", key="edit_draft")
            col1, col2 = st.columns(2)
            col1.button("✓", key=f"save_{event.id}", on_click=on_save_edit, args=(controller,))
            col2.button("✕", key=f"cancel_{event.id}", on_click=controller.cancel_edit)
            return

        if state.is_confirming_delete(event.id):
            st.write("Delete this entry?")
            col1, col2 = st.columns(2)
            col1.button("Yes", key=f"yes_{event.id}", on_click=on_confirm_delete, args=(controller,))
            col2.button("No", key=f"no_{event.id}", on_click=controller.cancel_delete)
            return

        try:
            classification = classifier.classify(event)
            label = classification.owner
            if classification.kind == EventKind.REIMBURSEMENT:
                label = f"{label} (reimbursement)"
        except UnclassifiableEventError:
            label = f"⚠️ {event.participant_tag}"

        col1, col2, col3 = st.columns([4, 1, 1])
        col1.markdown(
            f"**{format_amount(event.amount, symbol)}** · {label}  \n"
            f"{format_timestamp(event.timestamp)}"
        )
        col2.button("✏️", key=f"edit_{event.id}", on_click=on_start_edit, args=(controller, event.id))
        col3.button(
            "🗑️",
            key=f"delete_{event.id}",
            on_click=on_request_delete,
            args=(controller, event.id),
        )


if __name__ == "__main__":
    main()
