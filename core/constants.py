"""
Constants and default values for the platform.
"""

from pathlib import Path

# ============================================================================
# Directory Paths
# ============================================================================

# Base directories
PROJECT_ROOT = Path(__file__).parent.parent
CONFIGS_DIR = PROJECT_ROOT / 'configs'
STATE_DIR = PROJECT_ROOT / 'state'

# Config subdirectories
DEFAULT_CONFIGS_DIR = CONFIGS_DIR / 'defaults'
DEFAULT_SYSTEM_CONFIG = DEFAULT_CONFIGS_DIR / 'system.yaml'

# ============================================================================
# Config Keys
# ============================================================================

# Task and system settings live under this section
CONFIG_ROOT_KEY = 'retz'

# Key under which a successful run publishes its job id
LAST_JOB_ID_KEY = 'last_job_id'

# ============================================================================
# Polling
# ============================================================================

DEFAULT_MIN_POLL_INTERVAL = 1    # seconds
DEFAULT_MAX_POLL_INTERVAL = 20   # seconds

# Largest chunk requested per get-file call
MAX_FETCH_FILE_LENGTH = 65536

# Output streams of a remote job
STDOUT = 'stdout'
STDERR = 'stderr'

# ============================================================================
# Job Defaults
# ============================================================================

CLIENT_MODE_API = 'api'
CLIENT_MODE_CLI = 'cli'
DEFAULT_CLIENT_MODE = CLIENT_MODE_API

DEFAULT_CLIENT_CMD = '/opt/retz-client/bin/retz-client'
DEFAULT_CPU = 1
DEFAULT_MEM = '32MB'
DEFAULT_DISK = '32MB'
DEFAULT_GPU = 0
DEFAULT_PORTS = 0
DEFAULT_PRIORITY = 0
DEFAULT_TIMEOUT_MINUTES = 24 * 60

MAX_PORTS = 1000

# Size units accepted for mem/disk, as multipliers to MB
SIZE_UNITS_MB = {
    '': 1,
    'm': 1,
    'mb': 1,
    'g': 1024,
    'gb': 1024,
    't': 1024 * 1024,
    'tb': 1024 * 1024,
}

# ============================================================================
# Job Naming
# ============================================================================

JOB_NAME_MAX = 32
NAME_ELLIPSIS = '..'
