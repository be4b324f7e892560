"""Constants and configuration for cfpinner."""

import os
from pathlib import Path

from cfpinner import __version__

# Default scan settings
DEFAULT_THREADS = 10
DEFAULT_TRACK_TIMEOUT = 5.0
DEFAULT_ALIVE_TIMEOUT = 1.0
TRACK_MAX_PER_RANGE = 10
ALIVE_MAX_PER_RANGE = 100

# Discovery probes hit the edge itself, not a tracked object
DISCOVERY_DOMAIN = "www.cloudflare.com"
DISCOVERY_PATH = "/"

# Response headers inspected on every probe
CACHE_STATUS_HEADER = "cf-cache-status"
RAY_HEADER = "cf-ray"
COUNTRY_HEADER = "cf-ipcountry"
CACHE_HIT_VALUE = "HIT"

# Published address blocks
IP_RANGES_URL = "https://www.cloudflare.com/ips-v4"
IP_RANGES_DOWNLOAD_TIMEOUT = 30.0

# Cache freshness (days)
IP_RANGES_MAX_AGE_DAYS = 30
ALIVE_IPS_MAX_AGE_DAYS = 7

# State directory layout
STATE_DIR = Path(os.environ.get("CFPINNER_HOME") or (Path.home() / ".cfpinner"))
IP_RANGES_FILENAME = "cf_cdn_ips.txt"
ALIVE_IPS_FILENAME = "alive_ips.txt"
IMAGES_DIRNAME = "images"
METADATA_SUFFIX = ".meta"

# Tracked artifact dimensions
ARTIFACT_WIDTH = 512
ARTIFACT_HEIGHT = 512

# Report table column widths
REPORT_COLUMNS = {
    "ip": ("IP Address", 18),
    "status": ("Status", 12),
    "cache": ("Cache", 15),
    "iata": ("IATA", 8),
    "country": ("Country", 10),
    "ray": ("CF-Ray", 25),
}

# User agent for HTTP requests
USER_AGENT = f"CFPinner/{__version__}"

LOG_LEVEL = os.environ.get("CFPINNER_LOG_LEVEL", "WARNING").upper()
