"""Run the service: ``python -m commitcaster``."""

from __future__ import annotations

import os

import uvicorn

from commitcaster.api import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=os.environ.get("COMMITCASTER_HOST", "0.0.0.0"),
        port=int(os.environ.get("COMMITCASTER_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
