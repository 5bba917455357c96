#!/usr/bin/env python3
# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Guild tribunal server with the trust decay sweep running in the background.

Arbiter API key from ARBITER_API_KEY env var (never in code). Without it the
arbiter answers with its algorithmic fallback.
"""

import os, sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import uvicorn

from protocol import ARBITER_MODEL, DECAY_INTERVAL_SECONDS
from tribunal import log as tribunal_log
from tribunal.app import create_app
from tribunal.arbiter import Arbiter
from tribunal.service import Engine

DB_PATH = os.environ.get("TRIBUNAL_DB", "/var/lib/tribunal/tribunal.db")
PORT = int(os.environ.get("TRIBUNAL_PORT", "8000"))


def main():
    tribunal_log.configure()
    log = tribunal_log.get_logger("run_server")

    if not os.environ.get("ARBITER_API_KEY"):
        log.warning("server.no_arbiter_key", detail="AI analysis will use the fallback")

    if os.path.dirname(DB_PATH):
        os.makedirs(os.path.dirname(DB_PATH), exist_ok=True)

    engine = Engine(DB_PATH, arbiter=Arbiter(model=ARBITER_MODEL))
    app = create_app(engine)

    engine.decay.start()
    log.info("server.starting", port=PORT, db=DB_PATH, decay_interval=DECAY_INTERVAL_SECONDS)
    try:
        uvicorn.run(app, host="0.0.0.0", port=PORT)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
