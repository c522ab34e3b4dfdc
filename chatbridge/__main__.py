"""Run the bridge with uvicorn: ``python -m chatbridge``."""

import argparse

import uvicorn

from chatbridge.app import app, get_config
from chatbridge.telemetry import setup_logging


def main() -> None:
    config = get_config()
    parser = argparse.ArgumentParser(description="Chat-completions bridge for Claude and GPT")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=config.port)
    args = parser.parse_args()

    setup_logging(config.log_file)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
