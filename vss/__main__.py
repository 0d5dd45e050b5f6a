"""
Run the storage service with uvicorn: ``python -m vss``.
"""

from __future__ import annotations

import uvicorn

from vss.app import create_app
from vss.config import get_settings
from vss.dependencies import get_backend


def main() -> None:
    settings = get_settings()
    app = create_app(settings)
    # Build the backend (and its schema) before accepting traffic.
    get_backend(settings)
    uvicorn.run(
        app,
        host=settings.bind,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
