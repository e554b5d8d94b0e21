"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
APP_ID = "peershelf-v1"
NODE_NAME = os.environ.get("PEERSHELF_NODE_NAME") or platform.node()

# --- Storage ---
DATA_DIR = Path(
    os.environ.get("PEERSHELF_HOME", str(Path.home() / "peershelf"))
)
CONFIG_DIR = DATA_DIR / ".config"
LIBRARY_DIR = DATA_DIR  # docs/, images/, audio/, video/ live directly under it
DOWNLOAD_DIR = DATA_DIR / "downloaded"
FRIENDS_FILE = CONFIG_DIR / "friends.json"
IDENTITY_KEY_FILE = CONFIG_DIR / "identity.key"
os.makedirs(CONFIG_DIR, exist_ok=True)

# --- Networking ---
API_HOST = os.environ.get("PEERSHELF_API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("PEERSHELF_API_PORT", "8765"))
# Host other nodes should use to reach us; detected when unset
PUBLIC_HOST = os.environ.get("PEERSHELF_PUBLIC_HOST", "")

DISCOVERY_ENABLED = os.environ.get("PEERSHELF_DISCOVERY", "1") != "0"
DISCOVERY_PORT = 41235  # UDP
DISCOVERY_INTERVAL = 3  # seconds
NEARBY_TIMEOUT = 10  # seconds before a beaconing node drops off the nearby list

# --- Peers ---
PEER_REQUEST_TIMEOUT = 5.0  # seconds, per outbound request
FRIEND_ONLINE_THRESHOLD = 120  # seconds since last contact

# --- Sync ---
MAX_PARALLEL_TRANSFERS = 6
FILE_WRITE_TIMEOUT = 10.0  # seconds
SYNC_MEDIA_KINDS = ("docs", "images")
