#!/usr/bin/env python3
"""Development entry point for the ExpertDesk API.

The app hosts its scheduler loop in-process, so this always starts a
single worker. Deployments run ``uvicorn expertdesk.main:app`` directly.

    python run.py --reload
"""

import argparse

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Run the ExpertDesk API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="restart on code changes")
    args = parser.parse_args()

    uvicorn.run("expertdesk.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
