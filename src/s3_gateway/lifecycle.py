"""
Process lifecycle for the gateway.

Startup runs strictly in order, and any failure ends the process with a
non-zero exit code before traffic is accepted:

1. load and validate settings
2. resolve credentials
3. create the S3 backend and wait for it to become ready
4. bind the HTTP listener
5. tell the supervising process manager the service is ready

SIGTERM/SIGINT stop the listener, give in-flight responses
``SHUTDOWN_TIMEOUT`` seconds to finish, then close the backend.
"""

import asyncio
import contextlib
import logging
import os
import signal
import socket
from typing import Callable, Optional

import uvicorn

from s3_gateway import __version__
from s3_gateway.adapters.storage import BaseBackend, S3Backend
from s3_gateway.config.settings import ConfigurationError, Settings, load_settings
from s3_gateway.credentials import resolve_credentials
from s3_gateway.errors import ProxyError
from s3_gateway.main import create_app

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def notify_supervisor(state: str = "READY=1") -> bool:
    """
    Send a state notification over the systemd notify protocol.

    Returns False when no supervisor is listening (NOTIFY_SOCKET unset).
    """
    address = os.environ.get("NOTIFY_SOCKET")
    if not address:
        return False
    if address.startswith("@"):
        # abstract namespace socket
        address = "\0" + address[1:]
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
            sock.sendall(state.encode("utf-8"))
    except OSError as e:
        logger.warning(f"Could not notify supervisor ({state}): {e}")
        return False
    return True


class GatewayServer(uvicorn.Server):
    """uvicorn server whose signals are owned by the lifecycle controller."""

    def __init__(self, config: uvicorn.Config, on_started: Optional[Callable[[], None]] = None):
        super().__init__(config)
        self.on_started = on_started

    def install_signal_handlers(self) -> None:
        # uvicorn < 0.29
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        # uvicorn >= 0.29 re-raises captured signals after serve() returns
        yield

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started and self.on_started is not None:
            self.on_started()


class GatewayLifecycle:
    """Owns the backend handle and the HTTP server for one process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend_factory: Callable[..., BaseBackend] = S3Backend,
        install_signal_handlers: bool = True,
    ):
        self.settings = settings
        self.backend_factory = backend_factory
        self.install_signal_handlers = install_signal_handlers
        self.backend: Optional[BaseBackend] = None
        self.server: Optional[GatewayServer] = None
        self.ready = asyncio.Event()
        self.drain_failed = False
        self._drain_timer: Optional[asyncio.TimerHandle] = None

    async def run(self) -> int:
        """Run the gateway until shutdown and return the process exit code."""
        try:
            settings = self.settings or load_settings()
        except ConfigurationError as e:
            logger.error(str(e))
            return EXIT_FAILURE
        self.settings = settings

        credentials = resolve_credentials(settings.is_production, settings.credentials_file)
        try:
            backend = self.backend_factory(
                bucket=settings.bucket,
                credentials=credentials,
                region_name=settings.aws_region,
                endpoint_url=settings.aws_endpoint_url,
                chunk_size=settings.stream_chunk_size,
            )
        except Exception:
            logger.exception(f"Failed to create S3 backend for bucket {settings.bucket}, exiting")
            return EXIT_FAILURE
        self.backend = backend
        backend.on("error", self._on_backend_error)

        try:
            result = await backend.init()
        except Exception:
            logger.exception(f"S3 backend initialization raised for bucket {settings.bucket}, exiting")
            await backend.close()
            return EXIT_FAILURE
        if not result.ready:
            logger.error(f"Failed to initialize S3 backend for bucket {settings.bucket}, exiting")
            await backend.close()
            return EXIT_FAILURE
        logger.info(f"S3 backend initialized successfully for bucket: {settings.bucket}")

        app = create_app(settings, backend)
        config = uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.logging_level,
            lifespan="on",
        )
        self.server = GatewayServer(config, on_started=self._on_listening)

        loop = asyncio.get_running_loop()
        if self.install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)

        try:
            await self.server.serve()
        except SystemExit:
            # uvicorn exits this way when the listener cannot bind
            logger.error(f"Failed to start server on {settings.host}:{settings.port}")
            await backend.close()
            return EXIT_FAILURE
        finally:
            if self.install_signal_handlers:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
            if self._drain_timer is not None:
                self._drain_timer.cancel()

        await backend.close()
        if self.drain_failed:
            logger.error("Shutdown finished with responses still in flight")
            return EXIT_FAILURE
        logger.info("Server closed successfully")
        return EXIT_OK

    def request_shutdown(self, reason: str = "shutdown") -> None:
        """Stop accepting connections and start the bounded drain."""
        if self.server is None:
            return
        if self.server.should_exit:
            logger.warning(f"Received {reason} again, forcing shutdown")
            self._force_exit()
            return
        logger.info(f"Received {reason}, shutting down gracefully...")
        notify_supervisor("STOPPING=1")
        self.server.should_exit = True
        timeout = self.settings.shutdown_timeout if self.settings else 10.0
        self._drain_timer = asyncio.get_running_loop().call_later(timeout, self._drain_expired, timeout)

    def _drain_expired(self, timeout: float) -> None:
        logger.error(f"In-flight responses did not finish within {timeout}s")
        self._force_exit()

    def _force_exit(self) -> None:
        self.drain_failed = True
        if self.server is not None:
            self.server.force_exit = True

    def _on_listening(self) -> None:
        settings = self.settings
        logger.info(f"S3 gateway listening on http://{settings.host}:{settings.port}")
        logger.info(f"S3 gateway version: {__version__}")
        logger.info(f"S3 bucket: {settings.bucket}")
        if notify_supervisor("READY=1"):
            logger.info("Readiness signalled to process manager")
        self.ready.set()

    def _on_backend_error(self, error: ProxyError) -> None:
        logger.error(f"S3 backend error: [{error.code}] {error.message}")


async def serve(settings: Optional[Settings] = None) -> int:
    return await GatewayLifecycle(settings=settings).run()
