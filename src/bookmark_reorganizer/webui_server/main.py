from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import uvicorn

from .app import create_app
from .settings import load_webui_settings


def configure_logging(log_file: Path) -> None:
    """Set up rotating file + stderr-warnings logging; silence noisy third-party loggers."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    # Rotating file: 2 MB per file, five rotations kept next to the server log
    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    fh.setFormatter(fmt)
    fh.setLevel(logging.DEBUG)

    # Console: warnings and above (startup banners use print(), not logging)
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(fh)
    root.addHandler(ch)

    # Per-request access lines would drown out apply and undo records
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # Startup and crash messages still reach the file
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    # Provider HTTP clients log every connection at DEBUG
    for noisy in ("httpx", "urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main() -> int:
    settings = load_webui_settings()
    configure_logging(settings.logs_dir / "server.log")

    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        # Keep uvicorn from replacing the handlers installed above
        log_config=None,
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
