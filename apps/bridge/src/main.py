#!/usr/bin/env python3
import argparse
import asyncio
import logging
import os
from pathlib import Path

from config import (
    DEFAULT_ENV_FILE,
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_PORT_ATTEMPTS,
    DEFAULT_SECRET_CODE,
    Settings,
    apply_env,
    default_config_file,
    load_env_file,
)
from heartbeat import DEFAULT_CHECK_INTERVAL, DEFAULT_TIMEOUT
from server import MAX_PORT, build_app, start_http_server

logger = logging.getLogger("radio_bridge")


def _log_level(value: str) -> str:
    level = value.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise argparse.ArgumentTypeError(f"unknown log level: {value!r}")
    return level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Local HTTP bridge between the game and the radio web client")
    parser.add_argument('--env-file', type=Path, default=Path(DEFAULT_ENV_FILE),
                        help='KEY=VALUE file applied to the environment at startup (default: .env)')
    parser.add_argument('--port', type=int, default=None,
                        help=f'Preferred HTTP port, probed upward when busy (default: {DEFAULT_HTTP_PORT})')
    parser.add_argument('--max-port-attempts', type=int, default=DEFAULT_MAX_PORT_ATTEMPTS,
                        help='How many ports to try before giving up (default: 100)')
    parser.add_argument('--config-file', type=Path, default=None,
                        help='Where to write the {port, url} descriptor read by the game')
    parser.add_argument('--heartbeat-interval', type=float, default=DEFAULT_CHECK_INTERVAL,
                        help='Seconds between heartbeat checks (default: 5)')
    parser.add_argument('--heartbeat-timeout', type=float, default=DEFAULT_TIMEOUT,
                        help='Seconds without heartbeat before disconnecting (default: 30)')
    parser.add_argument('--log-level', type=_log_level, default=None,
                        help='Logging level (default: LOG_LEVEL or INFO)')
    return parser


def parse_args(argv=None):
    return build_parser().parse_args(argv)


def build_settings(args, parser=None) -> Settings:
    """
    Resolve settings from CLI arguments, falling back to the environment.
    Bad values from either source exit through `parser.error`.
    """
    parser = parser or build_parser()

    port = args.port
    if port is None:
        raw_port = os.environ.get("RADIO_BRIDGE_PORT", str(DEFAULT_HTTP_PORT))
        try:
            port = int(raw_port)
        except ValueError:
            parser.error(f"RADIO_BRIDGE_PORT must be an integer, got {raw_port!r}")
    if not 1 <= port <= MAX_PORT:
        parser.error(f"port must be between 1 and {MAX_PORT}, got {port}")

    log_level = args.log_level
    if log_level is None:
        raw_level = os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL)
        try:
            log_level = _log_level(raw_level)
        except argparse.ArgumentTypeError as exc:
            parser.error(f"LOG_LEVEL: {exc}")

    config_file = args.config_file
    if config_file is None:
        env_path = os.environ.get("RADIO_BRIDGE_CONFIG_FILE")
        config_file = Path(env_path) if env_path else default_config_file()

    return Settings(
        host=DEFAULT_HTTP_HOST,
        port=port,
        max_port_attempts=args.max_port_attempts,
        config_file=config_file,
        secret_code=os.environ.get("SECRET_CODE") or DEFAULT_SECRET_CODE,
        heartbeat_interval=args.heartbeat_interval,
        heartbeat_timeout=args.heartbeat_timeout,
        log_level=log_level,
    )


async def serve(settings: Settings) -> None:
    app = build_app(settings=settings)
    runner = await start_http_server(app)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    apply_env(load_env_file(args.env_file))
    settings = build_settings(args, parser)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Secret code loaded from %s", "environment" if os.environ.get("SECRET_CODE") else "default")

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == '__main__':
    main()
