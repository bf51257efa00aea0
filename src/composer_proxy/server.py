"""Composer repository proxy server using aiohttp."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import signal
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from aiohttp import web

from .cache import default_policies
from .constants import Constants
from .dispatcher import Dispatcher
from .errors import ContractViolation, ProxyError, TransportError
from .facet import ComposerProxyFacet
from .metadata import ComposerJsonProcessor
from .storage import ContentStore, FileContentStore, MemoryContentStore
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)


@dataclass
class ProxyConfig:
    """Configuration for the proxy server."""

    host: str = Constants.DEFAULT_HOST
    port: int = Constants.DEFAULT_PORT
    upstream_url: str = Constants.DEFAULT_UPSTREAM
    base_url: Optional[str] = None
    storage_dir: Optional[str] = None
    memory_max_entries: int = Constants.MEMORY_MAX_ENTRIES
    memory_max_bytes: int = Constants.MEMORY_MAX_BYTES
    metadata_max_age: int = Constants.METADATA_MAX_AGE
    content_max_age: int = Constants.CONTENT_MAX_AGE
    serve_stale_on_error: bool = True
    timeout: int = Constants.REQUEST_TIMEOUT
    request_timeout: int = Constants.HANDLER_TIMEOUT
    allow_external: bool = False
    redirect_allowlist: List[str] = field(
        default_factory=lambda: list(Constants.REDIRECT_ALLOWLIST)
    )

    # CLI attribute -> config field
    _ARG_FIELDS = {
        "PROXY_HOST": "host",
        "PROXY_PORT": "port",
        "PROXY_UPSTREAM": "upstream_url",
        "PROXY_BASE_URL": "base_url",
        "PROXY_STORAGE_DIR": "storage_dir",
        "PROXY_METADATA_MAX_AGE": "metadata_max_age",
        "PROXY_CONTENT_MAX_AGE": "content_max_age",
        "PROXY_TIMEOUT": "timeout",
        "PROXY_REQUEST_TIMEOUT": "request_timeout",
    }

    @property
    def public_url(self) -> str:
        """URL clients reach the proxy at; used in generated metadata."""
        if self.base_url:
            return self.base_url.rstrip("/")
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProxyConfig":
        """Create config from a mapping such as a parsed YAML file.

        Unknown keys are logged and ignored.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        values = {}
        for key, value in data.items():
            name = str(key).replace("-", "_")
            if name not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            values[name] = value
        if "redirect_allowlist" in values:
            values["redirect_allowlist"] = list(values["redirect_allowlist"] or [])
        return cls(**values)

    @classmethod
    def from_args(cls, args: Any, base: Optional["ProxyConfig"] = None) -> "ProxyConfig":
        """Create config from CLI arguments.

        Args:
            args: Parsed CLI arguments namespace.
            base: Config loaded from file; CLI values given explicitly win.

        Returns:
            ProxyConfig instance.
        """
        config = dataclasses.replace(base) if base is not None else cls()

        for arg_name, field_name in cls._ARG_FIELDS.items():
            value = getattr(args, arg_name, None)
            if value is not None:
                setattr(config, field_name, value)

        if getattr(args, "PROXY_NO_STALE", False):
            config.serve_stale_on_error = False
        if getattr(args, "PROXY_ALLOW_EXTERNAL", False):
            config.allow_external = True

        return config


class ComposerProxyServer:
    """HTTP caching proxy for a Composer repository.

    Serves ``packages.json``, ``packages/list.json``, provider documents and
    distribution archives, fetching each from upstream at most once per
    cache lifetime.
    """

    def __init__(self, config: ProxyConfig, store: Optional[ContentStore] = None):
        """Initialize the proxy server.

        Args:
            config: Server configuration.
            store: Content store override; defaults from ``config.storage_dir``.
        """
        self._config = config
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None

        if store is None:
            if config.storage_dir:
                store = FileContentStore(config.storage_dir)
            else:
                store = MemoryContentStore(
                    max_entries=config.memory_max_entries,
                    max_bytes=config.memory_max_bytes,
                )
        self._store = store

        self._upstream = UpstreamClient(
            upstream_url=config.upstream_url,
            timeout=config.timeout,
            redirect_allowlist=config.redirect_allowlist,
        )
        self._processor = ComposerJsonProcessor()
        self._facet = ComposerProxyFacet(
            store=self._store,
            upstream=self._upstream,
            processor=self._processor,
            base_url=config.public_url,
            policies=default_policies(
                metadata_max_age=config.metadata_max_age,
                content_max_age=config.content_max_age,
                serve_stale_on_error=config.serve_stale_on_error,
            ),
        )
        self._dispatcher = Dispatcher(self._facet, self._processor, config.public_url)

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def _create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get(Constants.HEALTH_PATH, self._health_check)
        app.router.add_get("/{path:.*}", self._handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "upstream": self._config.upstream_url,
            "cache": self.cache_stats(),
        })

    async def _on_startup(self, app: web.Application) -> None:
        """Called when the server starts."""
        await self._upstream.start()
        logger.info("Proxy server starting on %s:%s", self._config.host, self._config.port)

    async def _on_cleanup(self, app: web.Application) -> None:
        """Called when the server stops."""
        await self._upstream.stop()
        logger.info("Proxy server stopped")

    async def _handle_request(self, request: web.Request) -> web.Response:
        """Handle an incoming repository request.

        Args:
            request: Incoming HTTP request.

        Returns:
            HTTP response.
        """
        path = request.rel_url.raw_path
        parsed = self._dispatcher.parse(path)

        if parsed is None:
            logger.debug("Not a repository path: %s", path)
            return self._error_response(404, "Not found", path)

        logger.info("Request: GET %s -> %s", path, parsed.asset_kind.value)

        try:
            response = await asyncio.wait_for(
                self._dispatcher.handle(parsed),
                timeout=self._config.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out serving %s", path)
            return self._error_response(504, "Timed out", path)
        except TransportError as exc:
            status = 404 if exc.is_not_found else exc.status
            return self._error_response(status, str(exc), path)
        except ContractViolation:
            logger.exception("Routing error serving %s", path)
            return self._error_response(500, "Internal error", path)
        except ProxyError as exc:
            logger.warning("Failed to serve %s: %s", path, exc)
            return self._error_response(exc.status, str(exc), path)

        return web.Response(
            status=200,
            body=response.payload,
            content_type=response.content_type,
        )

    @staticmethod
    def _error_response(status: int, message: str, path: str) -> web.Response:
        """Create a JSON error response."""
        response_body = {
            "error": message,
            "path": path,
        }
        return web.Response(
            status=status,
            content_type="application/json",
            body=json.dumps(response_body, indent=2).encode(),
        )

    def cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with content store stats and in-flight fetch count.
        """
        return {
            "store": self._store.stats(),
            "in_flight": self._facet.in_flight(),
        }

    async def start(self) -> None:
        """Start the proxy server."""
        self._app = self._create_app()
        self._runner = web.AppRunner(self._app, handler_cancellation=True)
        await self._runner.setup()

        site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await site.start()

        logger.info(
            "Composer proxy listening on http://%s:%s",
            self._config.host, self._config.port,
        )
        logger.info("Upstream: %s", self._config.upstream_url)
        logger.info("Public URL: %s", self._config.public_url)

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None


def run_proxy_server_sync(config: ProxyConfig) -> None:
    """Run the proxy server synchronously.

    Installs signal handlers for SIGTERM and SIGINT for clean shutdown.

    Args:
        config: Server configuration.
    """
    server = ComposerProxyServer(config)
    loop = asyncio.new_event_loop()

    async def run():
        await server.start()
        stop_event = asyncio.Event()
        running_loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            running_loop.add_signal_handler(sig, stop_event.set)
        await stop_event.wait()
        logger.info("Shutdown signal received, stopping...")
        await server.stop()

    try:
        loop.run_until_complete(run())
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work (Windows)
        loop.run_until_complete(server.stop())
    finally:
        loop.close()
        logger.info("Proxy server shutdown complete")
