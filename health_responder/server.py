# health_responder/server.py
"""
Health Responder - runs beside the game server on every host.

Answers the liveness probe with a fixed 200 "ok". It has no state and does
not look at the game server; a running responder only proves the host and
the unit are up.
"""

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

RESPONSE_BODY = "ok"
DEFAULT_PORT = 8080

app = FastAPI(title="Health Responder", docs_url=None, redoc_url=None, openapi_url=None)


@app.get("/", response_class=PlainTextResponse)
def root():
    return RESPONSE_BODY


@app.get("/health", response_class=PlainTextResponse)
def health():
    return RESPONSE_BODY


def main():
    port = int(os.getenv("HEALTH_PORT", DEFAULT_PORT))
    logger.info(f"🏥 Health responder listening on 0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, access_log=False)


if __name__ == "__main__":
    main()
