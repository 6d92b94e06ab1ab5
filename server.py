"""
Server script
"""
import argparse
import logging

import uvicorn

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the sandbox server")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="localhost",
        help="Host to bind the server to (default: localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind the server to (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )

    args = parser.parse_args()

    try:
        logger.info(f"Starting server on {args.host}:{args.port}")
        uvicorn.run(
            "terragon_server.app:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=args.log_level,
            timeout_keep_alive=300,  # analyses stream for minutes
            timeout_graceful_shutdown=60,
        )
    except Exception as e:
        logger.error(f"Failed to start server: {str(e)}")
        exit(1)
