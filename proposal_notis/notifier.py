"""
Notification System using Apprise.
Formats milestone alerts and hands them to the chat sink, at most once per
(proposal, milestone).
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import apprise

from . import config
from .api.models import ProposalCreatedEvent
from .milestones import MilestoneKind
from .state_manager import DedupStore
from .utils.formatters import format_address, format_local_time, truncate_text

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """The notification sink could not deliver a message."""


HEADERS = {
    MilestoneKind.CREATED: "🗳 *New Proposal Created*",
    MilestoneKind.VOTING_STARTED: "✅ *Voting Started*",
    MilestoneKind.VOTING_ENDED: "🛑 *Voting Ended*",
    MilestoneKind.EXECUTED: "🎉 *Proposal Executed*",
}


def format_milestone_message(
    proposal_id: int,
    kind: MilestoneKind,
    proposal: Optional[ProposalCreatedEvent] = None,
    context: Optional[Dict[str, Any]] = None
) -> str:
    """
    Format a milestone alert as Telegram markdown.

    Args:
        proposal_id: Proposal identifier
        kind: Milestone being alerted
        proposal: Tracked proposal, when known (EXECUTED may arrive for an untracked proposal)
        context: Extra fields; 'time' overrides the alert timestamp, 'tx_hash' is shown when present

    Returns:
        Formatted message
    """
    context = context or {}
    message_lines = [
        HEADERS[kind],
        f"*Proposal ID:* {proposal_id}",
    ]

    if kind == MilestoneKind.CREATED and proposal is not None:
        message_lines += [
            f"*Proposer:* `{format_address(proposal.proposer)}`",
            f"*Target:* `{format_address(proposal.target)}`",
            f"*Start:* {proposal.vote_start}",
            f"*End:* {proposal.vote_end}",
        ]
    elif kind == MilestoneKind.VOTING_STARTED and proposal is not None:
        message_lines.append(f"*Start:* {proposal.vote_start}")
    elif kind == MilestoneKind.VOTING_ENDED and proposal is not None:
        message_lines.append(f"*End:* {proposal.vote_end}")

    if context.get("tx_hash"):
        message_lines.append(f"*Tx:* `{context['tx_hash']}`")

    message_lines.append(f"*Time:* {format_local_time(context.get('time'))}")

    if kind != MilestoneKind.EXECUTED and proposal is not None and proposal.description:
        message_lines += ["", "*Description:*", truncate_text(proposal.description)]

    return "\n".join(message_lines)


class AppriseNotifier:
    """Chat sink backed by Apprise. Channel keys map to Apprise URLs in config."""

    def __init__(self, channels: Optional[Dict[str, str]] = None, title: str = ""):
        self.channels = dict(config.NOTIFICATION_CHANNELS if channels is None else channels)
        self.title = title

    async def send(self, message: str, channel: Optional[str] = None) -> bool:
        """
        Send notification via Apprise.

        Args:
            message: Formatted message to send
            channel: Channel key from config (default: config.DEFAULT_CHANNEL)

        Returns:
            True if successful

        Raises:
            NotificationDeliveryError: Unknown channel or rejected URL
        """
        channel = channel or config.DEFAULT_CHANNEL

        # Get channel URL from config
        if channel not in self.channels:
            raise NotificationDeliveryError(f"Unknown notification channel: {channel}")

        channel_url = self.channels[channel]

        # Check if channel is configured
        if not channel_url:
            logger.warning(f"Notification channel '{channel}' not configured, skipping notification")
            logger.info(f"Message that would be sent:\n{message}")
            return True

        # Create Apprise instance
        apobj = apprise.Apprise()

        # Add notification service
        if not apobj.add(channel_url):
            raise NotificationDeliveryError(f"Failed to add notification service for channel '{channel}'")

        # Send notification
        logger.info(f"Sending notification to channel '{channel}'...")
        result = await apobj.async_notify(
            body=message,
            title=self.title,
            body_format=apprise.NotifyFormat.MARKDOWN
        )

        if result:
            logger.info(f"Successfully sent notification to '{channel}'")
        else:
            logger.error(f"Failed to send notification to '{channel}'")

        return bool(result)


class AlertEmitter:
    """
    Claims milestones in the dedup store and queues their alerts.

    Delivery is fire-and-forget through a single FIFO worker, so alerts reach
    the sink in the order they were emitted. A failed delivery is logged and
    the claim stands: the alert is dropped for this run.
    """

    def __init__(
        self,
        dedup: DedupStore,
        notifier,
        channel: Optional[str] = None,
    ):
        self.dedup = dedup
        self.notifier = notifier
        self.channel = channel or config.DEFAULT_CHANNEL

        self.sent_count = 0
        self.failed_count = 0

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    def emit(
        self,
        proposal_id: int,
        kind: MilestoneKind,
        proposal: Optional[ProposalCreatedEvent] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Alert a milestone unless it was already alerted.

        Must be called from the running event loop.

        Returns:
            True if an outbound notification was queued
        """
        if self._closed:
            logger.warning(f"Emitter closed, not alerting {kind.name} for proposal {proposal_id}")
            return False

        if not self.dedup.mark_fired(proposal_id, kind):
            logger.debug(f"{kind.name} already alerted for proposal {proposal_id}, skipping")
            return False

        try:
            message = format_milestone_message(proposal_id, kind, proposal, context)
        except Exception as e:
            logger.error(f"Error formatting {kind.name} message for proposal {proposal_id}: {e}", exc_info=True)
            message = f"{HEADERS[kind]}\n*Proposal ID:* {proposal_id}"

        self._ensure_worker()
        self._queue.put_nowait((proposal_id, kind, message))
        logger.info(f"Queued {kind.label} alert for proposal {proposal_id}")
        return True

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="alert-delivery")

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._deliver(*item)
            finally:
                self._queue.task_done()

    async def _deliver(self, proposal_id: int, kind: MilestoneKind, message: str) -> None:
        try:
            delivered = await self.notifier.send(message, self.channel)
        except asyncio.CancelledError:
            raise
        except NotificationDeliveryError as e:
            logger.error(f"Delivery failed for {kind.name} of proposal {proposal_id}: {e}")
            delivered = False
        except Exception as e:
            logger.error(f"Unexpected error delivering {kind.name} of proposal {proposal_id}: {e}", exc_info=True)
            delivered = False

        if delivered:
            self.sent_count += 1
        else:
            self.failed_count += 1
            logger.warning(f"Alert {kind.name} for proposal {proposal_id} dropped after failed delivery")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued alert has been attempted.

        Returns:
            False if the timeout elapsed first
        """
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timed out with {self.pending_count} alerts still queued")
            return False

    async def close(self, timeout: Optional[float] = config.SHUTDOWN_TIMEOUT) -> None:
        """Stop accepting alerts, let queued ones finish within timeout, then stop the worker."""
        self._closed = True
        await self.drain(timeout)
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info(f"Notification summary: {self.sent_count} sent, {self.failed_count} failed")

