"""Backend entrypoint: configure logging and serve the API with uvicorn."""

from __future__ import annotations

import logging

import uvicorn

from shared import config


def configure_logging() -> None:
    logging.basicConfig(
        level=config.log_level(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> None:
    configure_logging()
    uvicorn.run("backend.api:app", host="0.0.0.0", port=config.port())


if __name__ == "__main__":
    main()
