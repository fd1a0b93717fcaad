"""Streamlit options page for hostname redirect rules."""

from __future__ import annotations

# --- path fix ---
import sys
import os
# make the project root importable when launched with `streamlit run ui/app.py`
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
# ----------------

import asyncio

import streamlit as st

from rules.config_loader import load_config
from storage.areas import build_backend
from storage.config_store import ConfigurationStore
from ui.presenter import OptionsPresenter


def _presenter() -> OptionsPresenter:
    if "presenter" not in st.session_state:
        backend = build_backend(load_config())
        store = ConfigurationStore(backend)
        st.session_state["store"] = store
        st.session_state["presenter"] = OptionsPresenter(store)
    store: ConfigurationStore = st.session_state["store"]
    # every rerun reloads so writes from other tabs and the redirect engine show up
    asyncio.run(store.start())
    return st.session_state["presenter"]


def _show_form_message(presenter: OptionsPresenter) -> None:
    message = presenter.form_message
    if not message.text:
        return
    if message.kind == "error":
        st.error(message.text)
    else:
        st.success(message.text)


def _metrics_panel(presenter: OptionsPresenter) -> None:
    summary = presenter.summary()
    cols = st.columns(3)
    cols[0].metric("Redirects", f"{summary.total_redirects:g}")
    cols[1].metric("Time saved", summary.time_saved_label)
    cols[2].metric("Money saved", summary.money_saved_label)

    rate_text = st.text_input("Hourly rate (USD)", value=presenter.hourly_rate_text(), key="hourly_rate")
    if rate_text != presenter.hourly_rate_text():
        error = asyncio.run(presenter.input_hourly_rate(rate_text))
        if error:
            st.caption(f":red[{error}]")
        else:
            st.rerun()


def _add_rule_form(presenter: OptionsPresenter) -> None:
    with st.form("add_rule_form", clear_on_submit=True):
        source = st.text_input("Source hostname", placeholder="old.example.com")
        target = st.text_input("Target URL", placeholder="https://new.example.com/path")
        submitted = st.form_submit_button("Add rule")
    if submitted:
        asyncio.run(presenter.submit_add_rule(source, target))
        st.rerun()


def _rules_table(presenter: OptionsPresenter) -> None:
    rows = presenter.rows()
    if not rows:
        st.info("No rules yet. Add one above.")
        return

    for row in rows:
        rule = row.rule
        cols = st.columns([1, 3, 4, 1, 1])
        enabled = cols[0].checkbox("On", value=rule.enabled, key=f"enabled_{rule.id}")
        source = cols[1].text_input("Source", value=rule.source_hostname, key=f"source_{rule.id}")
        target = cols[2].text_input("Target", value=rule.target_url, key=f"target_{rule.id}")
        cols[3].write(f"{row.redirect_count:g}")
        if cols[4].button("Delete", key=f"delete_{rule.id}"):
            asyncio.run(presenter.delete_rule(rule.id))
            st.rerun()
        if row.source_error:
            cols[1].caption(f":red[{row.source_error}]")
        if row.target_error:
            cols[2].caption(f":red[{row.target_error}]")

        toggled = enabled != rule.enabled
        edited = source != rule.source_hostname or target != rule.target_url
        if toggled or edited:
            validation = asyncio.run(
                presenter.edit_rule(
                    rule.id,
                    enabled=enabled,
                    source_hostname=source,
                    target_url=target,
                    toggle=toggled,
                )
            )
            if validation.valid or toggled:
                st.rerun()


def main() -> None:
    st.set_page_config(page_title="Redirect Rules", layout="wide")
    presenter = _presenter()
    st.header("Redirect rules")
    _metrics_panel(presenter)
    _add_rule_form(presenter)
    _show_form_message(presenter)
    _rules_table(presenter)


if __name__ == "__main__":
    main()
