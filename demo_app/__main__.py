from __future__ import annotations

import argparse

import uvicorn

from demo_app.config import get_settings
from demo_app.main import create_app


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Demo HTTP service with metrics and tracing")
    parser.add_argument("--host", default=settings.host, help="Bind address (env HOST)")
    parser.add_argument("--port", type=int, default=settings.port, help="Listening port (env PORT)")
    args = parser.parse_args()

    settings = settings.model_copy(update={"host": args.host, "port": args.port})
    app = create_app(settings)
    # log_config=None keeps the JSON handler installed by configure_logging.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
