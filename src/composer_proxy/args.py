"""Argument parsing for the Composer proxy."""

import argparse

from .constants import Constants


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="composer-proxy",
        description=(
            "Caching proxy for Composer package repositories"
        ),
        add_help=True,
    )

    parser.add_argument("--host",
                        dest="PROXY_HOST",
                        help=f"Address to bind (default: {Constants.DEFAULT_HOST})",
                        action="store", type=str)
    parser.add_argument("--port",
                        dest="PROXY_PORT",
                        help=f"Port to listen on (default: {Constants.DEFAULT_PORT})",
                        action="store", type=int)
    parser.add_argument("--upstream",
                        dest="PROXY_UPSTREAM",
                        help=f"Upstream Composer repository (default: {Constants.DEFAULT_UPSTREAM})",
                        action="store", type=str)
    parser.add_argument("--base-url",
                        dest="PROXY_BASE_URL",
                        help="Public URL clients use to reach the proxy; written into generated metadata",
                        action="store", type=str)
    parser.add_argument("--storage-dir",
                        dest="PROXY_STORAGE_DIR",
                        help="Directory for cached content (default: in memory)",
                        action="store", type=str)
    parser.add_argument("--metadata-max-age",
                        dest="PROXY_METADATA_MAX_AGE",
                        help="Seconds metadata is served before revalidation; -1 never expires",
                        action="store", type=int)
    parser.add_argument("--content-max-age",
                        dest="PROXY_CONTENT_MAX_AGE",
                        help="Seconds archives are served before revalidation; -1 never expires",
                        action="store", type=int)
    parser.add_argument("--no-stale-on-error",
                        dest="PROXY_NO_STALE",
                        help="Fail instead of serving stale content when upstream is unreachable",
                        action="store_true")
    parser.add_argument("--timeout",
                        dest="PROXY_TIMEOUT",
                        help="Upstream request timeout in seconds",
                        action="store", type=int)
    parser.add_argument("--request-timeout",
                        dest="PROXY_REQUEST_TIMEOUT",
                        help="Upper bound in seconds for serving one client request",
                        action="store", type=int)
    parser.add_argument("-c", "--config",
                        dest="PROXY_CONFIG",
                        help="YAML (or JSON) configuration file",
                        action="store", type=str)
    parser.add_argument("--allow-external",
                        dest="PROXY_ALLOW_EXTERNAL",
                        help="Allow binding to non-loopback addresses",
                        action="store_true")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    return parser.parse_args(argv)
