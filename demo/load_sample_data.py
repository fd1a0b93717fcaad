"""Seed demo rules and simulate the redirect engine bumping its counters."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
from pathlib import Path
from typing import Iterable, Optional

from core.models import METRICS_KEY
from rules.config_loader import load_config
from rules.normalizer import normalize_metrics
from storage.areas import StorageBackend, build_backend
from storage.config_store import ConfigurationStore

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load sample redirect rules")
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(__file__).with_name("sample_rules.json"),
        help="Path to sample rules JSON",
    )
    parser.add_argument(
        "--redirects",
        type=int,
        default=12,
        help="Number of simulated redirects to record",
    )
    return parser.parse_args(argv)


def _load_json(path: Path) -> list[dict]:
    with path.open("r", encoding="utf-8") as fp:
        return json.load(fp)


async def record_redirect(backend: StorageBackend, rule_id: str) -> None:
    """Do what the redirect engine does after each redirect: bump both counters."""

    stored = await backend.metrics_area.get([METRICS_KEY])
    metrics = normalize_metrics(stored.get(METRICS_KEY))
    metrics.total_redirects += 1
    metrics.per_rule[rule_id] = (metrics.per_rule.get(rule_id) or 0) + 1
    await backend.metrics_area.set({METRICS_KEY: metrics.to_dict()})


async def _seed(data: list[dict], redirects: int) -> None:
    backend = build_backend(load_config())
    store = ConfigurationStore(backend)
    await store.start()
    existing = {rule.source_hostname for rule in store.rules}
    for item in data:
        if str(item.get("source_hostname", "")).strip().lower() in existing:
            continue
        validation = await store.add_rule(item.get("source_hostname"), item.get("target_url"))
        if not validation.valid:
            LOGGER.warning("Skipping sample rule %s: %s", item, validation.first_error.message)

    enabled = [rule for rule in store.rules if rule.enabled]
    for _ in range(redirects if enabled else 0):
        await record_redirect(backend, random.choice(enabled).id)
    store.close()
    LOGGER.info("Seeded %d rule(s), recorded %d redirect(s)", len(store.rules), redirects if enabled else 0)


def main(argv: Optional[Iterable[str]] = None) -> None:
    _configure_logging()
    args = _parse_args(argv)
    asyncio.run(_seed(_load_json(args.data), args.redirects))
    LOGGER.info("Demo data loaded. Open the options page to inspect rules and savings.")


if __name__ == "__main__":
    main()
