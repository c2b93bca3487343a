"""
Alert Engine for Pod Monitor.
Tracks per-node status between cycles and notifies subscribed channels when a
node goes online or offline.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set

from .config import MIN_PUBKEY_LENGTH
from .models import NodeProbeResult, TransitionEvent
from .notification_handler import parse_channel

log = logging.getLogger("PodMonitor.AlertManager")


class AlertEngine:
    """
    Owns the subscription set and the last observed status of every node.
    Both live in memory only and start empty on every process start.
    """

    def __init__(self, notifier):
        self.notifier = notifier
        self.subscriptions: Dict[str, Set[str]] = {}  # {channel: {pubkey, ...}}
        self.status_history: Dict[str, str] = {}  # {pubkey: last status}

    def _validate(self, channel: str, pubkey: str):
        parse_channel(channel)
        if not pubkey or len(pubkey) < MIN_PUBKEY_LENGTH:
            raise ValueError(f"Invalid pubkey '{pubkey}'. Expected at least {MIN_PUBKEY_LENGTH} characters.")

    def subscribe(self, channel: str, pubkey: str) -> bool:
        """Returns False if the channel already watched this pubkey."""
        self._validate(channel, pubkey)
        subs = self.subscriptions.setdefault(channel, set())
        if pubkey in subs:
            return False
        subs.add(pubkey)
        log.info(f"{channel} subscribed to {pubkey[:12]}...")
        return True

    def unsubscribe(self, channel: str, pubkey: str) -> bool:
        """Returns False if there was nothing to remove."""
        self._validate(channel, pubkey)
        subs = self.subscriptions.get(channel)
        if not subs or pubkey not in subs:
            return False
        subs.discard(pubkey)
        if not subs:
            del self.subscriptions[channel]
        log.info(f"{channel} unsubscribed from {pubkey[:12]}...")
        return True

    def list_subscriptions(self, channel: str) -> List[str]:
        parse_channel(channel)
        return sorted(self.subscriptions.get(channel, ()))

    def subscribers_for(self, pubkey: str) -> List[str]:
        return sorted(channel for channel, subs in self.subscriptions.items() if pubkey in subs)

    def detect_transitions(self, node_results: List[NodeProbeResult]) -> List[TransitionEvent]:
        events = []
        for node in node_results:
            if not node.pubkey:
                continue
            previous: Optional[str] = self.status_history.get(node.pubkey)
            if previous is not None and previous != node.status:
                events.append(TransitionEvent(
                    pubkey=node.pubkey,
                    previous_status=previous,
                    current_status=node.status,
                    network=node.network,
                    address=node.address,
                ))
            self.status_history[node.pubkey] = node.status
        return events

    async def check_node_alerts(self, node_results: List[NodeProbeResult]) -> List[TransitionEvent]:
        """
        Record this cycle's statuses and notify subscribers of every change.

        Deliveries run concurrently. A failing channel is logged and never
        affects the other deliveries or the caller.
        """
        events = self.detect_transitions(node_results)
        if not events:
            return events

        deliveries = []
        for event in events:
            log.info(
                f"[{event.network}] Node {event.pubkey[:12]}... went "
                f"{event.previous_status} -> {event.current_status}"
            )
            for channel in self.subscribers_for(event.pubkey):
                deliveries.append((channel, event))

        if not deliveries:
            return events

        outcomes = await asyncio.gather(
            *(self.notifier.deliver(channel, event) for channel, event in deliveries),
            return_exceptions=True,
        )
        for (channel, event), outcome in zip(deliveries, outcomes):
            if isinstance(outcome, BaseException):
                log.error(f"Failed to notify {channel} about {event.pubkey[:12]}...: {outcome}")
            elif outcome is False:
                log.warning(f"Notification to {channel} about {event.pubkey[:12]}... was not delivered")
        return events
