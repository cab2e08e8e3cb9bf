"""
Configuration for the Governance Proposal Watcher.
Centralizes contract address, RPC endpoints, notification channels and timing settings.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file in project root
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value.strip() else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "")
    return float(value) if value.strip() else default


# Chain access
# The websocket endpoint carries the live subscription, the HTTP endpoint
# serves tip height and historical range queries.
RPC_WSS_URL = os.getenv("RPC_WSS_URL", "")
RPC_HTTP_URL = os.getenv("RPC_HTTP_URL", "") or RPC_WSS_URL.replace("wss://", "https://").replace("ws://", "http://")
RPC_TIMEOUT = _env_float("RPC_TIMEOUT", 30.0)
RPC_MAX_RETRIES = _env_int("RPC_MAX_RETRIES", 3)

# Governor contract (Base)
GOVERNOR_ADDRESS = os.getenv("GOVERNOR_ADDRESS", "0xed9cd49bd29f43a6cb74f780ba3aef0fbf1a8a2a")

# How vote_start / vote_end are expressed: "auto" asks the governor (ERC-6372),
# "blocknumber" or "timestamp" force the mode.
CLOCK_MODE = os.getenv("CLOCK_MODE", "auto").lower()

# Telegram via Apprise
# See https://github.com/caronc/apprise/wiki/Notify_telegram for URL format
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")
TELEGRAM_TOPIC_ID = os.getenv("TELEGRAM_TOPIC_ID", "3710")  # "BASE DTF ALERTS"


def build_telegram_url(bot_token: str, chat_id: str, topic_id: str = "") -> str:
    """Build an Apprise Telegram URL, routed to a forum topic when one is given."""
    if not bot_token or not chat_id:
        return ""
    target = f"{chat_id}:{topic_id}" if topic_id else chat_id
    return f"tgram://{bot_token}/{target}/?format=markdown&preview=no"


# Notification channels (Apprise URL format)
NOTIFICATION_CHANNELS = {
    "governance_alerts": os.getenv("APPRISE_URL", "") or build_telegram_url(
        TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, TELEGRAM_TOPIC_ID
    ),
}
DEFAULT_CHANNEL = "governance_alerts"

# Reconciliation settings
START_BLOCK = _env_int("START_BLOCK", 0)              # First block of the full backfill
CATCHUP_BLOCKS = _env_int("CATCHUP_BLOCKS", 5000)     # Bounded catch-up window on every (re)connect
MAX_CHUNK_SPAN = _env_int("MAX_CHUNK_SPAN", 10000)    # Max blocks per eth_getLogs call
MIN_CHUNK_SPAN = _env_int("MIN_CHUNK_SPAN", 100)      # Floor when narrowing after a range error

# Run a full backfill from START_BLOCK on the first connection (otherwise only the bounded catch-up)
BACKFILL_ON_START = os.getenv("BACKFILL_ON_START", "true").lower() == "true"
# Interval between attempts to finish an incomplete backfill while the socket stays up
BACKFILL_RETRY_SECONDS = _env_float("BACKFILL_RETRY_SECONDS", 60.0)

# Live subscription settings
RECONNECT_BASE_DELAY = _env_float("RECONNECT_BASE_DELAY", 3.0)
RECONNECT_MAX_DELAY = _env_float("RECONNECT_MAX_DELAY", 60.0)

# Scheduler settings
# Block-height windows have no exact wall-clock due time, so they are re-checked on this interval
BLOCK_MODE_RECHECK_SECONDS = _env_float("BLOCK_MODE_RECHECK_SECONDS", 30.0)

# Shutdown
SHUTDOWN_TIMEOUT = _env_float("SHUTDOWN_TIMEOUT", 10.0)

# Message formatting
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "Europe/London")
DISPLAY_TIMEZONE_LABEL = os.getenv("DISPLAY_TIMEZONE_LABEL", "UK")
MAX_DESCRIPTION_LENGTH = _env_int("MAX_DESCRIPTION_LENGTH", 3000)

# Logging settings
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", "logs/proposal_notis.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 10485760  # 10MB
LOG_BACKUP_COUNT = 5
