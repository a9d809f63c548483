"""Entry point for running the bridge via ``python -m bridge``."""

from __future__ import annotations

import os

import uvicorn

from .config import load_environment


def main() -> None:
    """Start the local bridge service the host UI talks to."""

    load_environment()
    host = os.environ.get("BRIDGE_HOST", "127.0.0.1")
    port = int(os.environ.get("BRIDGE_PORT", "8765"))
    uvicorn.run("bridge.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
