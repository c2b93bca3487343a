import os


def parse_network_endpoints(raw: str) -> dict:
    """
    Parse a ``name=url,name=url`` string into an ordered mapping.

    Raises ValueError on malformed entries so a bad deployment fails at startup
    instead of silently collecting nothing.
    """
    endpoints = {}
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        name, sep, url = item.partition('=')
        if not sep or not name.strip() or not url.strip():
            raise ValueError(f"Invalid network endpoint entry: '{item}'. Expected 'name=url'.")
        endpoints[name.strip()] = url.strip()
    if not endpoints:
        raise ValueError("No networks configured.")
    return endpoints


# --- Configuration ---
# The database file path.
# This is a relative path by default, so it will be created in the current
# working directory. It can be overridden with the POD_MONITOR_DB_PATH environment variable.
DATABASE_FILE = os.getenv('POD_MONITOR_DB_PATH', 'pod_monitor.db')

SERVER_HOST = os.getenv('POD_MONITOR_HOST', '0.0.0.0')
SERVER_PORT = int(os.getenv('PORT', '3001'))

# --- Networks ---
# Directory RPC endpoint per logical network, visited in this order every cycle.
DEFAULT_NETWORK_ENDPOINTS = (
    'devnet1=https://rpc1.pchednode.com/rpc,'
    'devnet2=https://rpc2.pchednode.com/rpc,'
    'mainnet1=https://rpc3.pchednode.com/rpc,'
    'mainnet2=https://rpc4.pchednode.com/rpc'
)
NETWORK_RPC_ENDPOINTS = parse_network_endpoints(
    os.getenv('POD_MONITOR_NETWORKS', DEFAULT_NETWORK_ENDPOINTS)
)

# --- Collector ---
COLLECTOR_BATCH_SIZE = int(os.getenv('COLLECTOR_BATCH_SIZE', '10'))  # Nodes probed in parallel per group
COLLECTOR_INTERVAL_SECONDS = int(os.getenv('COLLECTOR_INTERVAL_SECONDS', '300'))  # 5 minutes
COLLECTOR_INITIAL_DELAY_SECONDS = 5  # Eager run shortly after startup
REGISTRY_TIMEOUT_SECONDS = 30
NODE_RPC_TIMEOUT_SECONDS = 8
NODE_RPC_PORT = int(os.getenv('NODE_RPC_PORT', '6000'))  # Registry addresses carry the gossip port, RPC lives here
USER_AGENT = 'PodMonitorCollector/1.0'
SAVE_PODS_SNAPSHOTS = True  # Keep a point-in-time dump of each registry

# --- Live data routes ---
REGISTRY_CACHE_TTL_SECONDS = 60
NODE_BATCH_LIMIT = 20  # Max addresses probed per batch request

# --- Database ---
DB_RETENTION_DAYS = int(os.getenv('DB_RETENTION_DAYS', '30'))
DB_PRUNE_INTERVAL_HOURS = 6
DB_THREAD_POOL_SIZE = 4
DB_CONNECTION_TIMEOUT = 30.0  # seconds
DB_MAX_RETRIES = 3  # Number of retry attempts for locked database
DB_RETRY_BASE_DELAY = 0.5  # Base delay between retries (seconds)
DB_RETRY_MAX_DELAY = 5.0  # Maximum delay between retries (seconds)

# --- History Queries ---
DEFAULT_HISTORY_PERIOD = '24h'
DEFAULT_HISTORY_INTERVAL = '15m'

# --- Notifications ---
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
TELEGRAM_API_URL = 'https://api.telegram.org'
TELEGRAM_POLL_TIMEOUT_SECONDS = 30
WEBHOOK_TIMEOUT_SECONDS = 10
MIN_PUBKEY_LENGTH = 10

EMAIL_SMTP_SERVER = os.getenv('POD_MONITOR_SMTP_SERVER', 'localhost')
EMAIL_SMTP_PORT = int(os.getenv('POD_MONITOR_SMTP_PORT', '587'))
EMAIL_USE_TLS = os.getenv('POD_MONITOR_SMTP_TLS', '1') == '1'
EMAIL_USERNAME = os.getenv('POD_MONITOR_SMTP_USERNAME', '')
EMAIL_PASSWORD = os.getenv('POD_MONITOR_SMTP_PASSWORD', '')
