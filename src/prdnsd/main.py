from __future__ import annotations

import asyncio
import errno
import logging
import signal
import sys
import threading
from typing import List, Optional

from .cache import PassiveCache, SQLitePTRStore
from .config.config_parser import ServerConfig, parse_config
from .config.logging_config import init_logging
from .debounce import DebounceGate
from .errors import ConfigError, PersistenceError
from .servers.dot_server import build_server_context, start_dot
from .servers.handler import RequestHandler
from .servers.udp_server import DNSUDPServer, make_udp_server
from .upstream.router import UpstreamRouter
from .utils.chroot import SETCAP_HELP, drop_privileges

LISTEN_HELP = "--listen [<ip>]:<port> with port>1024"
TLS_LISTEN_HELP = "--tlslisten [<ip>]:<port> with port>1024"


class ListenerManager:
    """Brief: Owns the UDP and DNS-over-TLS listeners and waits for shutdown.

    Each listener runs in a daemon thread. Shutdown is abrupt: once a
    termination signal arrives the caller returns and in-flight queries die
    with the process; nothing is drained.

    Inputs (constructor):
      - handler: RequestHandler shared by every listener.
      - logger: optional logger; defaults to 'prdnsd.main'.
    """

    def __init__(
        self, handler: RequestHandler, *, logger: Optional[logging.Logger] = None
    ) -> None:
        self.handler = handler
        self._log = logger or logging.getLogger("prdnsd.main")
        self.udp_server: Optional[DNSUDPServer] = None
        self.dot_address: Optional[tuple] = None
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()
        self._dot_loop: Optional[asyncio.AbstractEventLoop] = None
        self.signal_received: Optional[str] = None

    def _resolve_udp(self, data: bytes, client_ip: str) -> Optional[bytes]:
        return self.handler.resolve_bytes(data, client_ip, True)

    def _resolve_stream(self, data: bytes, client_ip: str) -> Optional[bytes]:
        return self.handler.resolve_bytes(data, client_ip, False)

    def start_udp(self, host: str, port: int) -> tuple:
        """Brief: Bind the UDP listener and serve it from a daemon thread.

        Inputs:
          - host: listen host ('' for all interfaces).
          - port: listen port (0 picks a free port).

        Outputs:
          - (host, port) actually bound. Raises OSError when binding fails.
        """
        server = make_udp_server(host, port, self._resolve_udp)
        self.udp_server = server
        bound = server.server_address[:2]
        self._log.info("ListenAndServe on %s:%d", bound[0], bound[1])
        t = threading.Thread(
            target=server.serve_forever, name="prdnsd-udp", daemon=True
        )
        t.start()
        self._threads.append(t)
        return bound

    def start_dot(self, host: str, port: int, ssl_context, timeout: float = 5.0) -> tuple:
        """Brief: Bind the DNS-over-TLS listener on its own event loop thread.

        Inputs:
          - host: listen host ('' for all interfaces).
          - port: listen port (0 picks a free port).
          - ssl_context: server SSLContext with the certificate loaded.
          - timeout: seconds to wait for the bind result.

        Outputs:
          - (host, port) actually bound. Raises OSError when binding fails.
        """
        ready = threading.Event()
        result: dict = {}

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                server = loop.run_until_complete(
                    start_dot(host, port, self._resolve_stream, ssl_context)
                )
            except OSError as e:
                result["error"] = e
                ready.set()
                loop.close()
                return
            result["address"] = server.sockets[0].getsockname()[:2]
            self._dot_loop = loop
            ready.set()
            try:
                loop.run_forever()
            finally:
                server.close()
                loop.close()

        t = threading.Thread(target=runner, name="prdnsd-dot", daemon=True)
        t.start()
        self._threads.append(t)
        if not ready.wait(timeout):
            raise OSError(errno.ETIMEDOUT, "DoT listener did not start in time")
        if "error" in result:
            raise result["error"]
        self.dot_address = result["address"]
        self._log.info(
            "TLS ListenAndServe on %s:%d", self.dot_address[0], self.dot_address[1]
        )
        return self.dot_address

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to request_stop; main thread only."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda signum, _frame: self.request_stop(signum))

    def request_stop(self, signum: Optional[int] = None) -> None:
        if signum is not None:
            self.signal_received = signal.Signals(signum).name
        self._stop.set()

    def wait(self, poll_interval: float = 1.0) -> None:
        """Block until request_stop() is called."""
        while not self._stop.wait(poll_interval):
            pass
        self._log.info("Signal received: %s", self.signal_received or "stop")

    def close(self) -> None:
        """Stop accepting on every listener; in-flight queries are not awaited."""
        if self.udp_server is not None:
            self.udp_server.shutdown()
            self.udp_server.server_close()
            self.udp_server = None
        if self._dot_loop is not None:
            self._dot_loop.call_soon_threadsafe(self._dot_loop.stop)
            self._dot_loop = None
        for t in self._threads:
            t.join(1.0)
        self._threads = []


def build_router(cfg: ServerConfig) -> UpstreamRouter:
    """Brief: Build the upstream table (and its DoT client context) from configuration.

    Raises:
      - ConfigError for bad upstream specs.
    """
    return UpstreamRouter.from_specs(
        cfg.upstream,
        cfg.client_timeout or None,
        logger=logging.getLogger("prdnsd.upstream"),
    )


def build_handler(
    cfg: ServerConfig, router: Optional[UpstreamRouter] = None
) -> RequestHandler:
    """Brief: Wire router, debounce gate and passive cache from configuration.

    Inputs:
      - cfg: ServerConfig.
      - router: prebuilt UpstreamRouter; built from cfg when None.

    Outputs:
      - RequestHandler. The cache is already loaded from cfg.store when set.

    Raises:
      - ConfigError for bad upstream specs or an unreadable store.
    """
    if router is None:
        router = build_router(cfg)
    store = None
    if cfg.store:
        try:
            store = SQLitePTRStore(cfg.store)
        except PersistenceError as e:
            raise ConfigError(f"Cannot read ptr data from {cfg.store!r}: {e}") from e
    cache = PassiveCache(store, logger=logging.getLogger("prdnsd.cache"))
    try:
        loaded = cache.load()
    except PersistenceError as e:
        cache.close()
        raise ConfigError(f"Cannot read ptr data from {cfg.store!r}: {e}") from e
    if store is not None:
        logging.getLogger("prdnsd.main").info(
            "Loaded %d PTR records from %s", loaded, cfg.store
        )
    gate = DebounceGate(
        cfg.debounce, cfg.count, logger=logging.getLogger("prdnsd.debounce")
    )
    return RequestHandler(
        router, cache, gate, logger=logging.getLogger("prdnsd.handler")
    )


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DNS server.

    Parses arguments and optional YAML config, loads TLS material, drops
    privileges, loads the passive cache, starts the listeners and blocks
    until SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 after a termination signal, 1 on startup failure.

    Example use:
        CLI:
            prdnsd --listen :5353 --chroot '' --upstream udp://9.9.9.9:53
    """
    try:
        cfg = parse_config(argv)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 1

    init_logging(cfg.logging, silent=cfg.silent)
    logger = logging.getLogger("prdnsd.main")

    udp_addr = tls_addr = None
    ssl_context = None
    handler = None
    try:
        udp_addr = cfg.udp_address
        tls_addr = cfg.tls_address
        if udp_addr is None and tls_addr is None:
            raise ConfigError("No DNS server listeners defined")
        if tls_addr is not None:
            ssl_context = build_server_context(cfg.cert, cfg.key_file)
        router = build_router(cfg)
        if cfg.chroot:
            drop_privileges(cfg.chroot, log=logger)
        handler = build_handler(cfg, router)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "Upstreams: [%s]", ", ".join(str(r) for r in handler.router.routes)
    )

    manager = ListenerManager(handler, logger=logger)
    manager.install_signal_handlers()
    try:
        if udp_addr is not None:
            try:
                manager.start_udp(*udp_addr)
            except OSError as e:
                if e.errno == errno.EACCES:
                    logger.error(
                        "Permission error, perhaps '%s %s' or %s will help?",
                        SETCAP_HELP,
                        sys.argv[0],
                        LISTEN_HELP,
                    )
                logger.error("Cannot serve DNS server: %s", e)
                return 1
        if tls_addr is not None:
            try:
                manager.start_dot(tls_addr[0], tls_addr[1], ssl_context)
            except OSError as e:
                if e.errno == errno.EACCES:
                    logger.error(
                        "Permission error, perhaps '%s %s' or %s will help?",
                        SETCAP_HELP,
                        sys.argv[0],
                        TLS_LISTEN_HELP,
                    )
                logger.error("Cannot serve TCP-TLS DNS server on %s: %s", cfg.tls_listen, e)
                return 1

        manager.wait()
        return 0
    finally:
        manager.close()
        handler.cache.close()


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
