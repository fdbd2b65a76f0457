"""Convenience launcher for the orchestrator API.

Dev:
  python -m kanz.api.serve --reload

Prod:
  python -m kanz.api.serve --host 0.0.0.0 --port $PORT
"""

from __future__ import annotations

import argparse
import os
from typing import List, Optional

import uvicorn


def main(argv: Optional[List[str]] = None) -> None:
    p = argparse.ArgumentParser(description="Serve the execution orchestrator API (FastAPI)")
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    p.add_argument("--reload", action="store_true")
    p.add_argument("--env-file", default=os.getenv("ENV_FILE", ".env"))
    args = p.parse_args(argv)

    env_file = str(args.env_file) if args.env_file and os.path.exists(args.env_file) else None
    uvicorn.run(
        "kanz.api.app:create_app",
        factory=True,
        host=str(args.host),
        port=int(args.port),
        reload=bool(args.reload),
        env_file=env_file,
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


if __name__ == "__main__":
    main()
