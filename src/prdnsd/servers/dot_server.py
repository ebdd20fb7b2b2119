import asyncio
import logging
import ssl
import threading
from typing import Callable, Optional

from ..errors import ConfigError

logger = logging.getLogger(__name__)

Resolver = Callable[[bytes, str], Optional[bytes]]


def build_server_context(
    cert_file: str,
    key_file: Optional[str] = None,
    min_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2,
) -> ssl.SSLContext:
    """
    Load the listener certificate and key into a server-side SSLContext.

    Inputs:
      - cert_file: Path to PEM certificate (chain).
      - key_file: Path to PEM private key; defaults to cert_file.
      - min_version: Minimum TLS version (default TLS1.2).
    Outputs:
      - ssl.SSLContext ready for asyncio.start_server.

    Raises:
      - ConfigError when the certificate or key cannot be loaded.
    """
    key_file = key_file or cert_file
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = min_version
    try:
        ctx.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(
            f"Cannot load X509 Cert/Key from {cert_file!r}/{key_file!r}: {e}"
        ) from e
    return ctx


async def _read_exact(reader: asyncio.StreamReader, n: int) -> bytes:
    """
    Read exactly n bytes from an asyncio StreamReader.

    Inputs:
      - reader: asyncio.StreamReader
      - n: Number of bytes to read
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs early.
    """
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        return e.partial


def _resolve_in_thread(
    loop: asyncio.AbstractEventLoop, resolver: Resolver, query: bytes, client_ip: str
) -> "asyncio.Future[Optional[bytes]]":
    """
    Run resolver(query, client_ip) on a dedicated daemon thread.

    Inputs:
      - loop: running event loop that owns the returned future
      - resolver: blocking resolver callable
      - query: wire-format DNS query
      - client_ip: peer address
    Outputs:
      - asyncio.Future completed with the resolver result or its exception.

    Threads are not pooled, so the number of resolver calls in flight is
    bounded only by the number of pending messages.
    """
    fut = loop.create_future()

    def _deliver(result, exc) -> None:
        if fut.done():
            return
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(result)

    def _work() -> None:
        try:
            result, exc = resolver(query, client_ip), None
        except Exception as e:
            result, exc = None, e
        try:
            loop.call_soon_threadsafe(_deliver, result, exc)
        except RuntimeError:
            # Loop already closed during shutdown; the connection is gone.
            logger.debug("Dropping DoT reply for %s after shutdown", client_ip)

    threading.Thread(target=_work, name="prdnsd-dot-query", daemon=True).start()
    return fut


async def _handle_conn(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    resolver: Resolver,
    idle_timeout: float = 15.0,
) -> None:
    """
    Handle a single DNS-over-TLS connection (RFC 7858).

    Each length-prefixed message is resolved on its own thread (see
    _resolve_in_thread), so a hung upstream exchange only stalls its own
    connection.

    Inputs:
      - reader: TLS-wrapped StreamReader
      - writer: TLS-wrapped StreamWriter
      - resolver: Callable that takes (query_bytes, client_ip) and returns
        response bytes, or None to send nothing and close the connection
      - idle_timeout: Seconds before closing idle connection
    Outputs:
      - None
    """
    peer = writer.get_extra_info("peername")
    client_ip = peer[0] if isinstance(peer, tuple) else "0.0.0.0"
    loop = asyncio.get_running_loop()
    try:
        while True:
            hdr = await asyncio.wait_for(_read_exact(reader, 2), timeout=idle_timeout)
            if len(hdr) != 2:
                break
            ln = int.from_bytes(hdr, byteorder="big")
            if ln <= 0:
                break
            query = await asyncio.wait_for(
                _read_exact(reader, ln), timeout=idle_timeout
            )
            if len(query) != ln:
                break
            response = await _resolve_in_thread(loop, resolver, query, client_ip)
            if not response:
                break
            writer.write(len(response).to_bytes(2, "big") + response)
            await writer.drain()
    except asyncio.TimeoutError:
        logger.debug("Idle DoT connection from %s closed", client_ip)
    except (ConnectionError, ssl.SSLError) as e:
        logger.warning("Error on DoT connection from %s: %s", client_ip, e)
    except Exception:
        logger.exception("Unhandled error on DoT connection from %s", client_ip)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, ssl.SSLError):  # pragma: no cover - peer went away
            pass


async def start_dot(
    host: str,
    port: int,
    resolver: Resolver,
    ssl_context: ssl.SSLContext,
    *,
    idle_timeout: float = 15.0,
) -> asyncio.AbstractServer:
    """
    Bind a DNS-over-TLS listener and start accepting connections.

    Inputs:
      - host: Listen address ('' or None for all interfaces)
      - port: Listen port (0 picks a free port)
      - resolver: Callable mapping (query_bytes, client_ip) -> response bytes or None
      - ssl_context: Server SSLContext, see build_server_context
      - idle_timeout: Per-connection idle timeout in seconds
    Outputs:
      - asyncio server object; raises OSError when binding fails.
    """
    return await asyncio.start_server(
        lambda r, w: _handle_conn(r, w, resolver, idle_timeout),
        host or None,
        port,
        ssl=ssl_context,
    )
