#!/usr/bin/env python3
"""
Start the leasing chat API
"""

import os

import uvicorn

from logging_config import setup_logging


def serve():
    """Run uvicorn against the application factory"""
    setup_logging()
    uvicorn.run(
        "leasing_chat.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    serve()
