#!/usr/bin/env python3
"""
Governance demo.

Runs one proposal through delegation, weighted voting and adjudication
with shortened periods, then prints the verdict and the collected metrics.

Usage:
    python examples/governance_demo.py
"""

import logging

import trio

from govcore import (
    ConsensusValidator,
    DelegationConfig,
    DelegationKind,
    DelegationLedger,
    GovernanceMetrics,
    NotificationHub,
    QuorumTracker,
    StaticRoleProvider,
    ValidatorConfig,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger("governance_demo")


def print_event(event):
    logger.info(f"event {event.sequence}: {event.event_type.value} {event.subject_id}")


async def main():
    identity = StaticRoleProvider(
        balances={"alice": 500, "bob": 300, "carol": 150, "dan": 50},
        admins={"carol"},
    )
    hub = NotificationHub()
    hub.subscribe(print_event)
    metrics = GovernanceMetrics()
    metrics.attach(hub)

    ledger = DelegationLedger(
        identity, DelegationConfig(lock_period=1, cooldown_period=0), notifier=hub
    )
    tracker = QuorumTracker(identity, notifier=hub)
    validator = ConsensusValidator(
        ledger,
        tracker,
        identity,
        ValidatorConfig(validation_period=3, check_interval=1),
        notifier=hub,
    )

    await ledger.create_delegation("alice", "bob", DelegationKind.PERCENTAGE, amount=1, percentage=40)
    await trio.sleep(1)
    logger.info(f"bob now holds {await ledger.get_effective_voting_power('bob')} voting power")

    async with trio.open_nursery() as nursery:
        await validator.start(nursery)
        item_id = await validator.submit({"proposal": "fund public dashboard"}, source="dao")

        await validator.vote(item_id, "bob", True)
        await validator.vote(item_id, "alice", True)
        await validator.vote(item_id, "carol", False)

        while (await validator.get_item(item_id)).is_pending():
            await trio.sleep(0.5)

        item = await validator.get_item(item_id)
        logger.info(
            f"verdict: {item.status.value} "
            f"(for={item.votes.votes_for} against={item.votes.votes_against})"
        )
        await validator.stop()

    print(metrics.collect())


if __name__ == "__main__":
    trio.run(main)
