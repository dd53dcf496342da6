"""Programmatic entry point: bind the port, then hand it to uvicorn.

The listening socket is created here, before the application starts, so
that a port that is taken or forbidden stops the process with exit status 1
before a single request is accepted. Because the socket is already
listening when uvicorn runs the lifespan, the database connect scheduled
there starts strictly after the bind.

Usage:
    python -m chirpline
    chirpline-server            # via pyproject.toml [project.scripts]
"""

import logging
import socket
import sys
from typing import Optional

import uvicorn
from pydantic import ValidationError

from chirpline.config import Settings
from chirpline.main import create_app, setup_logging

logger = logging.getLogger(__name__)

# OS-level queue for connections that arrive before the loop accepts them
LISTEN_BACKLOG: int = 2048
TIMEOUT_KEEP_ALIVE: int = 5

EXIT_BIND_FAILURE = 1
EXIT_CONFIG_FAILURE = 1
EXIT_STARTUP_FAILURE = 3


def bind_socket(host: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    Create a listening TCP socket on host:port.

    Raises:
        OSError: address in use, permission denied, unknown interface.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def main(settings: Optional[Settings] = None) -> None:
    """
    Start the Chirpline server.

    Raises:
        SystemExit: 1 when settings are invalid or the port cannot be bound,
                    3 when application startup fails.
    """
    if settings is None:
        try:
            settings = Settings()
        except ValidationError as e:
            setup_logging()
            logger.critical("Invalid configuration:\n%s", e)
            sys.exit(EXIT_CONFIG_FAILURE)

    setup_logging(settings.log_level)

    try:
        sock = bind_socket(settings.host, settings.port)
    except OSError as e:
        logger.critical(
            "Cannot listen on %s:%d: %s",
            settings.host,
            settings.port,
            e.strerror or e,
        )
        sys.exit(EXIT_BIND_FAILURE)

    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # RequestLoggingMiddleware writes the access log
        access_log=False,
        timeout_keep_alive=TIMEOUT_KEEP_ALIVE,
    )
    server = uvicorn.Server(config)
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()

    if not server.started:
        sys.exit(EXIT_STARTUP_FAILURE)


if __name__ == "__main__":
    main()
