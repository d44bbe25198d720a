from __future__ import annotations

import uvicorn

from .api import create_app
from .config import settings
from .logging_setup import setup_logging


setup_logging()
app = create_app()


def run() -> None:
    uvicorn.run("reelgen.main:app", host="0.0.0.0", port=settings.backend_port)


if __name__ == "__main__":
    run()
