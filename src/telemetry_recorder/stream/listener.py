"""
Telemetry Server
================

TCP listener that runs one ConnectionSession per accepted connection.

For each connection:
    1. Mint a session id
    2. Create the session's output directory
    3. Run the session to completion (shutdown barrier included)
    4. Record the result in the SessionRegistry
    5. Release the connection

The listener supervises sessions without being torn down by them: every
failure stays inside the connection that produced it.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Set

from telemetry_recorder.errors import StorageError
from telemetry_recorder.ids import new_session_id
from telemetry_recorder.protocol.decoder import FrameDecoder
from telemetry_recorder.sinks.encoder import EncoderFactory
from telemetry_recorder.storage import OutputLayout, create_output_root, create_session_dir
from telemetry_recorder.stream.registry import SessionRegistry
from telemetry_recorder.stream.session import ConnectionSession


logger = logging.getLogger(__name__)


class TelemetryServer:
    """
    Accepts device connections and records each one.

    Attributes:
        host: Bind host
        port: Bind port (0 picks a free port; see bound_port)
        output_root: Parent directory of all session directories
        registry: Record of active and finished sessions

    Example:
        server = TelemetryServer(
            host="0.0.0.0",
            port=8080,
            output_root=Path("./recordings"),
            decoder=FrameDecoder(),
            encoder_factory=ffmpeg_factory(),
        )
        await server.start()
        await server.serve_forever()
    """

    def __init__(
        self,
        host: str,
        port: int,
        output_root: Path,
        decoder: FrameDecoder,
        encoder_factory: EncoderFactory,
        layout: OutputLayout = OutputLayout(),
        opcode_style: str = "char",
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.output_root = output_root
        self.decoder = decoder
        self.encoder_factory = encoder_factory
        self.layout = layout
        self.opcode_style = opcode_style
        self.registry = registry or SessionRegistry()

        self._server: Optional[asyncio.AbstractServer] = None
        self._handlers: Set[asyncio.Task] = set()

    @property
    def serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Prepare the output root and start listening.

        Raises:
            StorageError: Output root cannot be created (fatal)
            OSError: Address cannot be bound
        """
        create_output_root(self.output_root)
        self._server = await asyncio.start_server(
            self._handle_connection, self.host, self.port
        )
        addresses = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        logger.info(f"Listening for devices on {addresses}, output root {self.output_root}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self) -> None:
        """
        Stop accepting, cancel in-flight sessions and wait for their shutdown.

        Cancelled sessions still flush and close their sinks.
        """
        if self._server is None:
            return

        logger.info("Telemetry server stopping...")
        self._server.close()

        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)

        await self._server.wait_closed()
        self._server = None
        logger.info("Telemetry server stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        self._handlers.add(task)

        peername = writer.get_extra_info("peername")
        peer = f"{peername[0]}:{peername[1]}" if peername else None
        session_id = new_session_id()
        started_at = time.time()
        logger.info(f"[{session_id}] Accepted connection from {peer}")

        session: Optional[ConnectionSession] = None
        try:
            try:
                output_dir = create_session_dir(self.output_root, session_id)
            except StorageError as e:
                e.bind(session_id)
                logger.error(f"Rejecting connection from {peer}: {e}")
                self.registry.reject(session_id, e, started_at, peer)
                return

            session = ConnectionSession(
                session_id=session_id,
                reader=reader,
                output_dir=output_dir,
                decoder=self.decoder,
                encoder_factory=self.encoder_factory,
                layout=self.layout,
                opcode_style=self.opcode_style,
                peer=peer,
            )
            self.registry.register(session)
            result = await session.run()
            self.registry.complete(result)

        except asyncio.CancelledError:
            if session is not None and session.result is not None:
                self.registry.complete(session.result)
            logger.info(f"[{session_id}] Session cancelled by server shutdown")
            raise

        except Exception as e:
            logger.exception(f"[{session_id}] Unexpected error in connection handler")
            if session is not None:
                self.registry.fail(session, e)

        finally:
            self._handlers.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"[{session_id}] Error closing connection: {e}")
