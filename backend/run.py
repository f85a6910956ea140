#!/usr/bin/env python3
"""
Dev launcher: loads backend/.env, then serves labtrend.main:app with the
host, port, reload and log level taken from Settings.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
import uvicorn


def uvicorn_options(settings) -> dict:
    return {
        "host": settings.host,
        "port": settings.port,
        # uvicorn refuses reload together with workers>1
        "reload": settings.debug,
        "log_level": settings.log_level.lower(),
    }


def main() -> None:
    backend_dir = Path(__file__).resolve().parent
    os.chdir(backend_dir)
    load_dotenv(backend_dir / ".env", override=False)

    # Imported late so the environment above is visible to Settings()
    from labtrend.config import settings

    uvicorn.run("labtrend.main:app", **uvicorn_options(settings))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
