"""
Run the SPH assistant API (web chat, documents and the WhatsApp gateway).

    python run_api.py --port 3001
    python run_api.py --reload           # dev: restart on code changes
"""

import argparse
import logging
import os
import socket
from contextlib import closing
from pathlib import Path
from typing import Any, Dict

import uvicorn
from dotenv import load_dotenv, find_dotenv

# .env must be loaded before app.config builds its Settings
load_dotenv(find_dotenv())

from app.logging import configure_logging  # noqa: E402

APP_IMPORT = "api.server:app"
BASE = Path(__file__).parent


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


def _port_available(host: str, port: int) -> bool:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run SPH Assistant API")
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3001")))
    parser.add_argument("--reload", action="store_true", default=_env_flag("RELOAD"), help="dev only")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    return parser.parse_args()


def _uvicorn_options(args: argparse.Namespace) -> Dict[str, Any]:
    port = args.port
    if not _port_available(args.host, port):
        print(f"[run_api] Port {port} is busy; selecting an ephemeral port.")
        port = 0
    options: Dict[str, Any] = {
        "host": args.host,
        "port": port,
        "log_level": args.log_level,
        "proxy_headers": True,
        "forwarded_allow_ips": "*",
    }
    if args.reload:
        # generated SPH files and the SQLite file must not trigger restarts
        options.update(
            reload=True,
            reload_dirs=[str(BASE / "app"), str(BASE / "api")],
            reload_excludes=["**/__pycache__/*", "uploads/*", ".data/*"],
        )
    return options


def main() -> None:
    args = _parse_args()
    configure_logging(getattr(logging, args.log_level.upper(), logging.INFO))
    uvicorn.run(APP_IMPORT, **_uvicorn_options(args))


if __name__ == "__main__":
    main()
