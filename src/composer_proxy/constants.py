"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONFIG_ERROR = 2


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_UPSTREAM = "https://repo.packagist.org"
    DEFAULT_HOST = "127.0.0.1"
    DEFAULT_PORT = 8080
    USER_AGENT = "ComposerProxy/1.0"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "COMPOSER_PROXY_LOG_LEVEL"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for upstream requests
    HANDLER_TIMEOUT = 300  # Upper bound on one client request, sub-fetches included
    METADATA_MAX_AGE = 86400  # 24h, matches the usual Composer metadata TTL
    CONTENT_MAX_AGE = -1  # Archives for a given version never change
    MAX_REDIRECTS = 5
    MEMORY_MAX_ENTRIES = 1000
    MEMORY_MAX_BYTES = 512 * 1024 * 1024  # 512MB
    # Hosts archive downloads commonly redirect to
    REDIRECT_ALLOWLIST = (
        "codeload.github.com",
        "objects.githubusercontent.com",
        "bitbucket.org",
        "gitlab.com",
    )
    HEALTH_PATH = "/_proxy/health"
    JSON_CONTENT_TYPE = "application/json"
    ZIP_CONTENT_TYPE = "application/zip"
