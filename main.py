#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
main.py: Cloud Run entrypoint for the KPI gateway.

    main:app                # WSGI callable
    python main.py          # local development server
"""

import logging
import os

from kpi_gateway import Settings, create_app

# ----------------------------------------------------------------
# Logging
# ----------------------------------------------------------------
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

settings = Settings.from_env()
app = create_app(settings)

if __name__ == "__main__":
    logging.getLogger(__name__).info("API online on port %d", settings.port)
    app.run(host="0.0.0.0", port=settings.port)
