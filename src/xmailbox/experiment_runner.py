# src/xmailbox/experiment_runner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from xmailbox.core.enums import MailboxMode
from xmailbox.experiments import SCENARIOS, ScenarioId, ScenarioSample, make_network


@dataclass
class RunConfig:
    """
    Configuration for a single experimental run:

      - mode:        mailbox lifecycle under test (sync / async)
      - scenario_id: which relay behaviour to instantiate
      - signed:      whether mailboxes require a relayer witness
    """
    mode: MailboxMode
    scenario_id: ScenarioId
    signed: bool = True


def run_scenario(config: RunConfig) -> List[ScenarioSample]:
    """Run one scenario on a fresh network and return its samples."""
    network = make_network(config.mode, signed=config.signed)
    return SCENARIOS[config.scenario_id].run(network)


def print_scenario(config: RunConfig) -> List[ScenarioSample]:
    scenario = SCENARIOS[config.scenario_id]
    samples = run_scenario(config)

    print(f"=== {config.mode.value} / {config.scenario_id.value} / signed={config.signed} ===")
    print(scenario.description)
    print()

    for idx, s in enumerate(samples):
        verdict = "ok" if s.as_expected else "UNEXPECTED"
        print(f"--- sample {idx} ({s.label.value}) [{verdict}] {s.description}")
        print(f"  settled={s.settled} error={s.error.value if s.error else None}")
        for fault in s.detail.get("faults", []):
            print(f"  fault {fault['src']} -> {fault['dest']}: {fault['reason']}")
        print()
    return samples


# -------------------------------------------------------------------------
# Simple interactive CLI
# -------------------------------------------------------------------------

def _select_modes() -> List[MailboxMode]:
    print("\nAvailable modes:")
    print("  [1] sync")
    print("  [2] async")
    print("  [3] both\n")

    choice = input("Select mode (1/2/3, default=3): ").strip()
    if choice == "1":
        return [MailboxMode.SYNC]
    if choice == "2":
        return [MailboxMode.ASYNC]
    return [MailboxMode.SYNC, MailboxMode.ASYNC]


def _select_scenarios() -> List[ScenarioId]:
    """
    Let the user choose:
      - a single index (e.g., "1")
      - multiple indices (e.g., "1,3")
      - "all"
    """
    ids: List[ScenarioId] = list(SCENARIOS.keys())

    print("\nRelay scenarios:\n")
    for idx, sid in enumerate(ids, start=1):
        desc = SCENARIOS[sid].description.strip().splitlines()[0]
        print(f"  [{idx}] {sid.value}  -  {desc}")
    print()

    choice = input("Scenario indices ('1', '1,3' or 'all', default=all): ").strip().lower()
    if choice in ("", "all"):
        return ids

    selected: List[ScenarioId] = []
    for part in choice.split(","):
        part = part.strip()
        try:
            idx = int(part)
        except ValueError:
            print(f"Ignoring invalid index: {part!r}")
            continue
        if idx < 1 or idx > len(ids):
            print(f"Ignoring out-of-range index: {idx}")
            continue
        selected.append(ids[idx - 1])
    return selected


def main() -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=== Cross-chain mailbox experiment runner ===")
    modes = _select_modes()
    scenarios = _select_scenarios()
    if not scenarios:
        print("No scenarios selected. Exiting.")
        return 0

    unexpected = 0
    for mode in modes:
        print(f"\n===== mode = {mode.value} =====\n")
        for sid in scenarios:
            samples = print_scenario(RunConfig(mode=mode, scenario_id=sid))
            unexpected += sum(1 for s in samples if not s.as_expected)
            print("=" * 60 + "\n")

    print(f"Unexpected outcomes: {unexpected}")
    return 1 if unexpected else 0


if __name__ == "__main__":
    raise SystemExit(main())
