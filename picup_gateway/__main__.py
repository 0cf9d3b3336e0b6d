from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import uvicorn

from .app import create_app
from .config_loader import ConfigError, load_config


def setup_logging() -> None:
    """
    Configure logging for service deployment.

    Logs are formatted with timestamp, level, logger name, and message and go
    to stdout, where the service manager captures them.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="picup-srv", description="Self-hosted image and file upload server.")
    p.add_argument("--config", help="Path to the TOML config file (default: ./picup-srv.toml)")
    p.add_argument("--host", help="Bind address, overrides the config file")
    p.add_argument("--port", type=int, help="Listening port, overrides the config file")
    args = p.parse_args(argv)

    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error(f"Cannot start PicUp server: {exc}")
        return 2

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    logger.info(f"PicUp server is now listening to port {config.port}. Ctrl+C to stop the server.")
    uvicorn.run(create_app(config), host=config.host, port=config.port)
    logger.info("PicUp server is now shutting down!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
