"""Anomady: dev launcher. Starts the API server with auto-reload."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))


def main():
    parser = argparse.ArgumentParser(description="Anomady dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--no-reload", action="store_true",
                        help="Run without watching for source changes")
    args = parser.parse_args()

    # The app reads DATA_DIR when it is imported by the reloader process
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting Anomady on http://localhost:{PORT} ...")
    uvicorn.run("anomady.app:app", host=HOST, port=PORT, reload=not args.no_reload)


if __name__ == "__main__":
    main()
