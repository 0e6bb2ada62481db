"""CLI argument parsing and uvicorn entry point."""

import logging
import os


def main():
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="ChatPilot API Server")
    parser.add_argument("--host", default=os.getenv("CHATPILOT_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CHATPILOT_PORT", "8000")))
    parser.add_argument("--log-level", default=os.getenv("CHATPILOT_LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(levelname)s: %(name)s - %(message)s",
    )

    from .app import api
    uvicorn.run(api, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
