"""Serve the facility intake API.

Usage:
    python -m facility_intake
    python -m facility_intake --host 0.0.0.0 --port 8080
    python -m facility_intake --audit
"""

import argparse
import logging

import uvicorn

from facility_intake.api import create_app
from facility_intake.config import ConfigResolver


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="facility-intake")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    parser.add_argument(
        "--audit", action="store_true", help="print resolved configuration and exit"
    )
    args = parser.parse_args(argv)

    resolved = ConfigResolver().resolve()
    if args.audit:
        print(resolved.audit())  # noqa: T201
        return

    logging.basicConfig(level=args.log_level.upper())
    uvicorn.run(
        create_app(resolved.to_frozen()),
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
