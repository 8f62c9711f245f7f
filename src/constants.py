"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    UPDATE_FAILED = 2


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration defaults; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    RUN_LOG_FORMAT = "%(asctime)s %(message)s"
    RUN_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    INTROSPECT_TIMEOUT = 5  # Timeout in seconds for best-effort introspection

    # Branches
    TRUNK_BRANCH = "master"
    STAGING_BRANCH = "staging"
    UPDATE_BRANCHES = ["master", "staging", "staging-next", "python-unstable"]
    BRANCH_PREFIX = "auto-update/"
    REMOTE = "origin"

    # Policy thresholds
    STAGING_REBUILD_THRESHOLD = 100
    PYTHON_REBUILD_LIMIT = 100
    MERGE_BASE_MAX_AGE_SEC = 3600
    FETCH_MAX_AGE_SEC = 3600
    PUSH_ATTEMPTS = 3
    BUILD_LOG_TAIL_LINES = 30

    # CI backpressure
    CI_STATS_URL = "https://events.nix.ci/stats.php"
    CI_QUEUE_THRESHOLD = 2
    CI_POLL_INTERVAL_SEC = 60

    # Code hosting
    GITHUB_API_BASE = "https://api.github.com"
    GITHUB_WEB_BASE = "https://github.com"
    GITHUB_REPO = "NixOS/nixpkgs"
    ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
    HTTP_RETRY_MAX = 3
    HTTP_CACHE_TTL_SEC = 300

    # Binary cache
    CACHIX_CACHE = "r-ryantm"

    # Vulnerability database
    OSV_API_URL = "https://api.osv.dev/v1/query"
    OSV_ECOSYSTEM = ""  # empty: query by package name alone
    DEFAULT_VULNDB = "osv"

    # Nix
    SHA256_ZERO = "0" * 52
    HASH_DELIMITER = "got:    "
    NIX_BIN = "nix"
    NIX_BUILD_BIN = "nix-build"
    NIX_ENV_BIN = "nix-env"

    LOG_DIR = "~/.cache/nixpkgs-update/logs"
    TOOL_URL = "https://github.com/ryantm/nixpkgs-update"
