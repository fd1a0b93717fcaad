import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.models import METRICS_KEY, RULES_KEY
from storage.areas import memory_backend
from storage.config_store import ConfigurationStore
from ui.presenter import OptionsPresenter


def _presenter():
    backend = memory_backend()
    store = ConfigurationStore(backend, id_factory=lambda: "rule-1")
    return backend, store, OptionsPresenter(store)


def test_add_rule_messages() -> None:
    async def _run() -> None:
        backend, store, presenter = _presenter()
        await store.start()

        message = await presenter.submit_add_rule("example.com", "http://example.com")
        assert message.kind == "error"
        assert "self-loop" in message.text

        message = await presenter.submit_add_rule("", "https://x.example.com")
        assert message.text == "Hostname is required."

        message = await presenter.submit_add_rule("old.example.com", "https://new.example.com/path")
        assert (message.text, message.kind) == ("Rule added.", "success")

        backend.sync.fail_writes = "disk full"
        message = await presenter.submit_add_rule("c.example.com", "https://d.example.com")
        assert (message.text, message.kind) == ("Failed to save rule: disk full", "error")

    asyncio.run(_run())


def test_rows_show_counts_and_stored_errors() -> None:
    async def _run() -> None:
        backend, store, presenter = _presenter()
        backend.sync.put_raw(
            RULES_KEY,
            [
                {"id": "ok", "enabled": True, "source_hostname": "a.example.com", "target_url": "https://b.example.com/"},
                {"id": "bad", "enabled": True, "source_hostname": "nodot", "target_url": "https://b.example.com/"},
            ],
        )
        backend.local.put_raw(METRICS_KEY, {"total_redirects": 3, "per_rule": {"ok": 3, "gone": 9}})
        await store.start()

        rows = presenter.rows()
        assert [(row.rule.id, row.redirect_count) for row in rows] == [("ok", 3), ("bad", 0)]
        assert rows[0].source_error == ""
        assert rows[1].source_error == "Hostname must include at least one dot."

    asyncio.run(_run())


def test_edit_rule_inline_errors_and_toggle() -> None:
    async def _run() -> None:
        backend, store, presenter = _presenter()
        await store.start()
        await presenter.submit_add_rule("a.example.com", "https://b.example.com/")

        validation = await presenter.edit_rule(
            "rule-1", enabled=True, source_hostname="a.example.com", target_url="https://a.example.com"
        )
        assert not validation.valid
        row = presenter.rows()[0]
        assert "self-loop" in row.target_error
        assert row.rule.target_url == "https://b.example.com/"

        await presenter.edit_rule(
            "rule-1", enabled=False, source_hostname="a.example.com", target_url="https://a.example.com", toggle=True
        )
        stored = backend.sync.snapshot()[RULES_KEY][0]
        assert stored["enabled"] is False
        assert stored["target_url"] == "https://a.example.com"

        backend.sync.fail_writes = "offline"
        await presenter.edit_rule(
            "rule-1", enabled=True, source_hostname="a.example.com", target_url="https://c.example.com"
        )
        assert presenter.form_message.text == "Failed to save rules: offline"
        # the value that failed to persist stays visible until the next reload
        assert store.find_rule("rule-1").target_url == "https://c.example.com/"

    asyncio.run(_run())


def test_delete_rule_and_failure() -> None:
    async def _run() -> None:
        backend, store, presenter = _presenter()
        await store.start()
        await presenter.submit_add_rule("a.example.com", "https://b.example.com/")

        backend.sync.fail_writes = "offline"
        message = await presenter.delete_rule("rule-1")
        assert message.text == "Failed to delete rule: offline"

        backend.sync.fail_writes = None
        message = await presenter.delete_rule("rule-1")
        assert message.text == ""
        assert presenter.rows() == []

    asyncio.run(_run())


def test_hourly_rate_field() -> None:
    async def _run() -> None:
        backend, store, presenter = _presenter()
        await store.start()
        assert presenter.hourly_rate_text() == ""
        assert presenter.summary().money_saved_label == "$0.00"

        assert await presenter.input_hourly_rate("abc") == "Hourly rate must be a valid number."
        assert await presenter.input_hourly_rate("20") == ""
        assert presenter.hourly_rate_text() == "20.00"

        await backend.local.set({METRICS_KEY: {"total_redirects": 4, "per_rule": {}}})
        summary = presenter.summary()
        assert summary.time_saved_label == "1h 10m"
        assert summary.money_saved_label == "$23.33"

        backend.sync.fail_writes = "offline"
        assert await presenter.input_hourly_rate("25") == ""
        assert presenter.form_message.text == "Failed to save hourly rate: offline"

    asyncio.run(_run())
