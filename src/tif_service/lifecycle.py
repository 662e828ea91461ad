import asyncio
import atexit
import logging
import signal
import sys
from types import FrameType, TracebackType
from typing import Any, TextIO

import uvicorn

from .conversion.interfaces import ConnectionGateway

logger = logging.getLogger(__name__)

# uvicorn handles these itself and re-raises them once it has stopped
SERVER_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGBREAK") if hasattr(signal, name)
)
EXTRA_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGHUP", "SIGQUIT", "SIGPIPE") if hasattr(signal, name)
)
CLEAR_LINE_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGHUP") if hasattr(signal, name)
)


class ShutdownCoordinator:
    """Runs a store disconnect on every path that ends the process.

    Termination signals stop the server, after which `before_exit` disconnects.
    An atexit hook, the interpreter excepthook and the event loop exception
    handler cover the remaining paths. `disconnect` is idempotent, so triggers
    that overlap are harmless.
    """

    def __init__(self, connection: ConnectionGateway, *, stream: TextIO | None = None) -> None:
        self._connection = connection
        self._stream = stream if stream is not None else sys.stdout
        self._server: uvicorn.Server | None = None
        self._shutdown: asyncio.Task[None] | None = None
        self._previous_excepthook = sys.excepthook
        self.exit_code = 0

    def install(self, server: uvicorn.Server, loop: asyncio.AbstractEventLoop) -> None:
        self._server = server
        for sig in SERVER_SIGNALS:
            signal.signal(sig, self._exit_after_signal)
        for sig in EXTRA_SIGNALS:
            try:
                loop.add_signal_handler(sig, server.handle_exit, sig, None)
            except (NotImplementedError, RuntimeError):
                logger.debug("cannot handle %s on this platform", signal.Signals(sig).name)
        loop.set_exception_handler(self.on_loop_exception)
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self.on_uncaught_exception
        atexit.register(self.on_exit)

    def _exit_after_signal(self, sig: int, frame: FrameType | None) -> None:
        raise SystemExit(self.exit_code)

    def signal_received(self, sig: int) -> None:
        if sig in CLEAR_LINE_SIGNALS:
            self._reset_cursor()
        try:
            name = signal.Signals(sig).name
        except ValueError:
            name = str(sig)
        logger.info(name)

    def _reset_cursor(self) -> None:
        isatty = getattr(self._stream, "isatty", None)
        if callable(isatty) and isatty():
            self._stream.write("\r\x1b[2K")
            self._stream.flush()

    async def shutdown(self) -> None:
        if self._shutdown is None:
            self._shutdown = asyncio.create_task(asyncio.to_thread(self._connection.disconnect))
        await self._shutdown

    async def before_exit(self) -> None:
        logger.info("beforeExit %s", self.exit_code)
        await self.shutdown()

    def on_exit(self) -> None:
        logger.info("exit %s", self.exit_code)
        self._connection.disconnect()

    def on_uncaught_exception(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        logger.error("uncaughtException %s", exc, exc_info=(exc_type, exc, tb))
        self.exit_code = 1
        try:
            self._connection.disconnect()
        finally:
            self._previous_excepthook(exc_type, exc, tb)

    def on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        logger.error(
            "unhandledRejection %s",
            context.get("message", "unhandled exception in event loop"),
            exc_info=context.get("exception"),
        )
        self.exit_code = 1
        if self._server is not None:
            self._server.should_exit = True


class TifServer(uvicorn.Server):
    """uvicorn server that reports signals to the shutdown coordinator."""

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator) -> None:
        super().__init__(config)
        self.coordinator = coordinator

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        # uvicorn re-raises a captured signal after stopping; the loop handler sees it again
        if self.should_exit and sig in EXTRA_SIGNALS:
            return
        self.coordinator.signal_received(sig)
        super().handle_exit(sig, frame)

    async def startup(self, sockets: Any = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            logger.info("listening on port %s", self.config.port)


async def serve(server: TifServer) -> int:
    """Serve until a termination trigger fires, then disconnect. Returns the exit status."""
    coordinator = server.coordinator
    coordinator.install(server, asyncio.get_running_loop())
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn exits with its own status when startup fails
        if server.started and isinstance(e.code, int):
            coordinator.exit_code = e.code
    finally:
        if not server.started and coordinator.exit_code == 0:
            coordinator.exit_code = 1
        await coordinator.before_exit()
    return coordinator.exit_code
