"""
Chain-log client for the governor contract.
Wraps web3.py: HTTP for tip height and historical range queries, a websocket
subscription for live events. Every transport failure surfaces as TransportError.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, List, Mapping, Optional

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.providers.persistent import WebSocketProvider

from .. import config
from .abi import GOVERNOR_ABI, PROPOSAL_CREATED_TOPIC, PROPOSAL_EXECUTED_TOPIC
from .models import (
    ClockMode,
    GovernorEvent,
    MalformedEventError,
    RangeTooLargeError,
    TransportError,
    parse_event,
)

logger = logging.getLogger(__name__)

# Substrings providers use when refusing an eth_getLogs span or result size
RANGE_ERROR_MARKERS = (
    "block range",
    "range too large",
    "range is too large",
    "exceed maximum block range",
    "query returned more than",
    "too many results",
    "response size exceeded",
    "limit exceeded",
    "-32005",
)


def is_range_error(error: Exception) -> bool:
    """Check whether a provider error means the queried range was too large."""
    text = str(error).lower()
    return any(marker in text for marker in RANGE_ERROR_MARKERS)


class LiveSubscription:
    """
    One websocket connection with an active logs subscription.
    Owned by the subscription manager, closed and never reused after a failure.
    """

    def __init__(self, client: "ChainLogClient", w3: AsyncWeb3, subscription_id: str):
        self._client = client
        self._w3 = w3
        self.subscription_id = subscription_id
        self._closed = False

    async def events(self) -> AsyncIterator[GovernorEvent]:
        """
        Yield decoded governor events in source order.

        Raises:
            TransportError: When the socket drops or the stream ends
        """
        try:
            async for payload in self._w3.socket.process_subscriptions():
                log = payload.get("result") if isinstance(payload, Mapping) else None
                if log is None:
                    continue
                try:
                    yield self._client.decode_log(log)
                except MalformedEventError as e:
                    logger.warning(f"Skipping malformed live event: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TransportError(f"Subscription stream failed: {e}") from e
        raise TransportError("Subscription stream ended")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._w3.provider.disconnect()
            logger.debug(f"Closed subscription {self.subscription_id}")
        except Exception as e:
            logger.debug(f"Error while closing subscription {self.subscription_id}: {e}")


class ChainLogClient:
    """
    Client for the governor's event log.
    Handles decoding, timeouts and error classification.
    """

    def __init__(
        self,
        governor_address: str = config.GOVERNOR_ADDRESS,
        http_url: str = config.RPC_HTTP_URL,
        wss_url: str = config.RPC_WSS_URL,
        timeout: float = config.RPC_TIMEOUT,
    ):
        self.governor_address = Web3.to_checksum_address(governor_address)
        self.http_url = http_url
        self.wss_url = wss_url
        self.timeout = timeout

        self._http = AsyncWeb3(AsyncHTTPProvider(http_url)) if http_url else None
        # process_log does not touch the network, a disconnected instance is enough
        self._contract = Web3().eth.contract(address=self.governor_address, abi=GOVERNOR_ABI)

        logger.info("ChainLogClient initialized")
        logger.info(f"Governor: {self.governor_address}")
        logger.info(f"HTTP RPC: {http_url or '(not configured)'}")
        logger.info(f"WSS RPC: {wss_url or '(not configured)'}")

    @property
    def log_filter(self) -> dict:
        """Filter matching both governor events."""
        return {
            "address": self.governor_address,
            "topics": [[PROPOSAL_CREATED_TOPIC, PROPOSAL_EXECUTED_TOPIC]],
        }

    def _require_http(self) -> AsyncWeb3:
        if self._http is None:
            raise TransportError("RPC_HTTP_URL is not configured")
        return self._http

    def decode_log(self, log: Mapping[str, Any]) -> GovernorEvent:
        """
        Decode a raw log into a governor event model.

        Raises:
            MalformedEventError: Unknown topic or undecodable payload
        """
        topics = log.get("topics") or []
        if not topics:
            raise MalformedEventError("Log has no topics")

        topic0 = topics[0] if isinstance(topics[0], str) else Web3.to_hex(topics[0])
        topic0 = topic0.lower()
        if topic0 == PROPOSAL_CREATED_TOPIC:
            event = self._contract.events.ProposalCreated()
        elif topic0 == PROPOSAL_EXECUTED_TOPIC:
            event = self._contract.events.ProposalExecuted()
        else:
            raise MalformedEventError(f"Unexpected topic {topic0}")

        try:
            event_data = event.process_log(log)
        except Exception as e:
            raise MalformedEventError(f"Could not decode log: {e}") from e

        parsed = parse_event(event_data)
        if log.get("removed"):
            parsed = parsed.model_copy(update={"removed": True})
        return parsed

    @retry(
        stop=stop_after_attempt(config.RPC_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TransportError),
        reraise=True
    )
    async def get_tip_height(self) -> int:
        """
        Get the current chain tip height.

        Raises:
            TransportError: After retries are exhausted
        """
        w3 = self._require_http()
        try:
            height = await asyncio.wait_for(w3.eth.block_number, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out fetching block number after {self.timeout}s") from e
        except Exception as e:
            raise TransportError(f"Failed to fetch block number: {e}") from e
        logger.debug(f"Chain tip: {height}")
        return int(height)

    async def query_range(self, from_block: int, to_block: int) -> List[GovernorEvent]:
        """
        Fetch governor events in the closed range [from_block, to_block].

        Returns:
            Decoded events ordered by (block_number, log_index); malformed logs are skipped

        Raises:
            RangeTooLargeError: Provider rejected the span or result size
            TransportError: Timeout or any other provider failure
        """
        w3 = self._require_http()
        params = dict(self.log_filter, fromBlock=from_block, toBlock=to_block)

        try:
            logs = await asyncio.wait_for(w3.eth.get_logs(params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out querying blocks {from_block}-{to_block}") from e
        except Exception as e:
            if is_range_error(e):
                raise RangeTooLargeError(from_block, to_block, str(e)) from e
            raise TransportError(f"Failed querying blocks {from_block}-{to_block}: {e}") from e

        events = []
        for log in logs:
            try:
                events.append(self.decode_log(log))
            except MalformedEventError as e:
                logger.warning(f"Skipping malformed log in blocks {from_block}-{to_block}: {e}")

        events.sort(key=lambda event: event.sort_key)
        logger.debug(f"Blocks {from_block}-{to_block}: {len(events)} governor events")
        return events

    async def subscribe(self) -> LiveSubscription:
        """
        Open a websocket connection and subscribe to governor logs.

        Raises:
            TransportError: Connection or subscription failed
        """
        if not self.wss_url:
            raise TransportError("RPC_WSS_URL is not configured")

        w3 = AsyncWeb3(WebSocketProvider(self.wss_url))
        try:
            await asyncio.wait_for(w3.provider.connect(), timeout=self.timeout)
            subscription_id = await asyncio.wait_for(
                w3.eth.subscribe("logs", self.log_filter), timeout=self.timeout
            )
        except Exception as e:
            try:
                await w3.provider.disconnect()
            except Exception:
                logger.debug("Disconnect after failed subscribe also failed", exc_info=True)
            raise TransportError(f"Failed to subscribe via {self.wss_url}: {e}") from e

        logger.info(f"Subscribed to governor logs (subscription ID: {subscription_id})")
        return LiveSubscription(self, w3, str(subscription_id))

    async def get_clock_mode(self) -> ClockMode:
        """Ask the governor for its ERC-6372 clock mode, defaulting to block numbers."""
        try:
            w3 = self._require_http()
            contract = w3.eth.contract(address=self.governor_address, abi=GOVERNOR_ABI)
            mode = await asyncio.wait_for(contract.functions.CLOCK_MODE().call(), timeout=self.timeout)
        except Exception as e:
            logger.info(f"Governor does not report CLOCK_MODE ({e}), assuming block numbers")
            return ClockMode.BLOCKNUMBER

        clock_mode = ClockMode.from_clock_mode_string(mode)
        logger.info(f"Governor clock mode: {mode!r} -> {clock_mode.value}")
        return clock_mode
