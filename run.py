#!/usr/bin/env python3
"""
Main entrypoint: load config, build the runtime (local state file + GitHub sync) and serve the API.
Run with: python run.py
Config file: config.json beside this file, or the path in DAYPLAN_CONFIG.
"""
from __future__ import annotations

import logging
import sys

import uvicorn

from config import load as load_config


def main() -> None:
    config = load_config()
    # App loggers (dayplan.api, task_store, sync_service) emit to the same stream as uvicorn
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )

    import web_app
    from runtime import build_runtime

    web_app._runtime = build_runtime(config)

    uvicorn.run(
        web_app.app,
        host="0.0.0.0",
        port=config.web_ui_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
