"""CLI entry point for the Composer proxy server."""

from __future__ import annotations

import ipaddress
import logging
import os
import sys
from typing import Any, Dict, Optional

import yaml

from .args import parse_args
from .constants import ExitCodes
from .logging_utils import configure_logging
from .server import ProxyConfig, run_proxy_server_sync

logger = logging.getLogger(__name__)


def _is_local_bind_host(host: str) -> bool:
    """Return True if host is a loopback/local bind target."""
    if not host:
        return False
    host_lower = host.strip().lower()
    if host_lower in ("localhost",):
        return True
    try:
        return ipaddress.ip_address(host_lower).is_loopback
    except ValueError:
        # Non-IP hostnames are treated as non-local unless explicitly allowed.
        return False


def _enforce_local_binding(host: str, allow_external: bool) -> None:
    """Enforce local-only binding unless explicitly allowed."""
    if _is_local_bind_host(host):
        return
    if not allow_external:
        sys.stderr.write(
            "ERROR: Non-local bindings require --allow-external.\n"
        )
        sys.exit(ExitCodes.CONFIG_ERROR.value)
    logger.warning(
        "Binding proxy to non-local address (%s). Ensure network controls are in place.",
        host,
    )


def _load_config_file(config_path: Optional[str]) -> Dict[str, Any]:
    """Load proxy configuration from file.

    Args:
        config_path: Path to a YAML/JSON config file.

    Returns:
        Configuration mapping; the ``proxy`` section if the file has one.
    """
    if not config_path:
        return {}

    if not os.path.isfile(config_path):
        logger.warning("Config file not found: %s", config_path)
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load config %s: %s", config_path, e)
        sys.exit(ExitCodes.CONFIG_ERROR.value)

    if not isinstance(data, dict):
        return {}
    section = data.get("proxy", data)
    return section if isinstance(section, dict) else {}


def _setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    configure_logging(getattr(args, "LOG_LEVEL", None))

    # Add file handler if --logfile specified
    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def build_config(args: Any) -> ProxyConfig:
    """Merge defaults, the optional config file and CLI arguments."""
    config_path = getattr(args, "PROXY_CONFIG", None)
    file_config = _load_config_file(config_path)
    if file_config:
        logger.info("Loaded config from: %s", config_path)
    base = ProxyConfig.from_mapping(file_config)
    return ProxyConfig.from_args(args, base=base)


def run_proxy_server(args: Any) -> None:
    """Entry point for the proxy server command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    _setup_logging(args)

    config = build_config(args)
    _enforce_local_binding(config.host, config.allow_external)

    # Print startup banner
    print(
        f"\n"
        f"  Composer Proxy\n"
        f"  ==============\n"
        f"  Listening: http://{config.host}:{config.port}\n"
        f"  Upstream:  {config.upstream_url}\n"
        f"  Storage:   {config.storage_dir or 'memory'}\n"
        f"\n"
        f"  Configure Composer:\n"
        f"    composer config repos.packagist composer {config.public_url}\n"
        f"\n"
        f"  Press Ctrl+C to stop\n"
    )

    run_proxy_server_sync(config)


def main(argv=None) -> None:
    """Console script entry point."""
    run_proxy_server(parse_args(argv))


if __name__ == "__main__":
    main()
