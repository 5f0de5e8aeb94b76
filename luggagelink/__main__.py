"""
Run the API with uvicorn: ``python -m luggagelink``.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from luggagelink.app import create_app
from luggagelink.config import get_settings


def main() -> int:
    parser = argparse.ArgumentParser(description="LuggageLink API server")
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Interface to bind",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=5000,
        help="Port to listen on",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
