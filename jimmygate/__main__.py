"""Run the gateway with uvicorn: ``python -m jimmygate``."""

from __future__ import annotations

import errno
import socket

import uvicorn

from jimmygate.config.settings import settings
from jimmygate.util.logger import logger


def bind_failure_hint(exc: OSError, host: str, port: int) -> str:
    if exc.errno == errno.EADDRINUSE:
        return (
            f"address {host}:{port} is already in use. "
            f"Stop the process listening on port {port}, or set JIMMYGATE_PORT and restart."
        )
    if exc.errno == errno.EACCES:
        return f"no permission to bind {host}:{port}. Try a higher port (for example 3000 or 3011)."
    return f"failed to bind {host}:{port}: {exc}"


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def main() -> None:
    # 先自行绑定端口，绑定失败时给出可操作的提示
    try:
        sock = _bind_socket(settings.host, settings.port)
    except OSError as exc:
        logger.error(bind_failure_hint(exc, settings.host, settings.port))
        raise SystemExit(1) from exc

    logger.info(
        "%s listening on http://%s:%s -> %s",
        settings.app_name,
        settings.host,
        settings.port,
        settings.upstream_base_url,
    )
    config = uvicorn.Config(
        "jimmygate.core.gateway:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    uvicorn.Server(config).run(sockets=[sock])


if __name__ == "__main__":
    main()
