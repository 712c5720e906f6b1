# pingwatch - Main Entry Point
# WebSocket client with ping/pong liveness detection

"""
pingwatch - Entry Point

Connects to the configured WebSocket server, keeps the link alive with a
"ping"/"pong" heartbeat and logs every application message received.

Runs until Ctrl+C / SIGTERM or until the connection closes (a missed pong
closes it). There is no reconnect; restart the process or supervise it
externally.

Configuration:
- config/config.yaml (websocket + logging sections)
- config/secrets.env and environment variables (PINGWATCH_* overrides)
"""

import asyncio
import os
import signal
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from pingwatch.connection.websocket_client import WebSocketClient
from pingwatch.processors.message_router import MessageRouter
from pingwatch.utils.helpers import format_age, format_timestamp, ms_to_seconds, now_ms
from pingwatch.utils.logger import configure_logging, setup_logger

# Global flag for shutdown
shutdown_event = asyncio.Event()

DEFAULT_CONFIG = {
    'websocket': {
        'url': "ws://localhost:8001/ws",
        'ping_interval_ms': 30000,
        'close_timeout': 10
    },
    'logging': {
        'level': "INFO",
        'file': "logs/pingwatch.log"
    },
    'stats': {
        'report_interval': 300
    }
}

# Environment variable -> (section, key, converter)
ENV_OVERRIDES = {
    'PINGWATCH_SERVER_URL': ('websocket', 'url', str),
    'PINGWATCH_PING_INTERVAL_MS': ('websocket', 'ping_interval_ms', int),
    'PINGWATCH_PONG_TIMEOUT_MS': ('websocket', 'pong_timeout_ms', int),
    'PINGWATCH_LOG_LEVEL': ('logging', 'level', str),
}

class PingwatchApp:
    """
    Main application class - wires client, router and logging together
    """

    def __init__(self, config: dict):
        """Initialize components from config"""
        self.config = config
        self.logger = setup_logger("Pingwatch")

        ws_config = config.get('websocket', {})
        ping_interval_ms = ws_config.get('ping_interval_ms', 30000)
        pong_timeout_ms = ws_config.get('pong_timeout_ms', ping_interval_ms)

        self.router = MessageRouter()
        self.router.add_handler(self.on_message)

        self.websocket_client = WebSocketClient(
            url=ws_config.get('url', "ws://localhost:8001/ws"),
            ping_interval=ms_to_seconds(ping_interval_ms),
            pong_timeout=ms_to_seconds(pong_timeout_ms),
            close_timeout=ws_config.get('close_timeout', 10),
            router=self.router
        )

        self.report_interval = config.get('stats', {}).get('report_interval', 300)
        self.closed_event = asyncio.Event()
        self.close_info = None
        self.start_time = datetime.now()
        self.stats = {
            'messages_received': 0,
            'errors': 0,
            'uptime_seconds': 0
        }

    async def on_open(self):
        """Called when WebSocket opens"""
        self.logger.info(f"✅ Connected at {format_timestamp(now_ms())}")

    async def on_message(self, message: str):
        """Application handler for non-heartbeat messages"""
        self.stats['messages_received'] += 1
        self.logger.info(f"Received message: {message}")

    async def on_close(self, code: int, reason: str):
        """Called when the connection closes for any reason"""
        self.close_info = (code, reason)
        self.closed_event.set()

    async def on_error(self, error: Exception):
        """Called on transport errors"""
        self.stats['errors'] += 1
        self.logger.error(f"WebSocket error: {error}")

    async def stats_reporter(self):
        """Background task: report statistics periodically"""
        while True:
            await asyncio.sleep(self.report_interval)

            uptime = (datetime.now() - self.start_time).total_seconds()
            self.stats['uptime_seconds'] = int(uptime)

            client_stats = self.websocket_client.get_stats()
            heartbeat = client_stats['heartbeat'] or {}
            last_pong_at = heartbeat.get('last_pong_at')
            pong_age = None
            if last_pong_at is not None:
                pong_age = asyncio.get_running_loop().time() - last_pong_at

            self.logger.info("📊 Statistics Report:")
            self.logger.info(f"   Uptime: {self.stats['uptime_seconds']}s, state: {client_stats['state']}")
            self.logger.info(f"   Messages: {self.stats['messages_received']} received, {client_stats['messages_sent']} sent")
            self.logger.info(
                f"   Heartbeat: {heartbeat.get('pings_sent', 0)} pings, "
                f"{heartbeat.get('pongs_received', 0)} pongs, last pong {format_age(pong_age)}"
            )
            self.logger.info(f"   Errors: {self.stats['errors']}")

    async def run(self):
        """Run until shutdown is requested or the connection closes"""
        self.logger.info("=" * 60)
        self.logger.info("🚀 pingwatch - Starting")
        self.logger.info("=" * 60)

        self.websocket_client.on_open(self.on_open)
        self.websocket_client.on_close(self.on_close)
        self.websocket_client.on_error(self.on_error)

        connected = await self.websocket_client.connect()
        if not connected:
            self.logger.error("❌ Failed to connect to WebSocket")
            return

        self.logger.info("Press Ctrl+C to stop")
        reporter = asyncio.create_task(self.stats_reporter())
        waiters = [
            asyncio.create_task(shutdown_event.wait()),
            asyncio.create_task(self.closed_event.wait())
        ]

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters + [reporter]:
                task.cancel()
            await asyncio.gather(*waiters, reporter, return_exceptions=True)

        if self.close_info is None:
            self.logger.info("Shutting down...")
            await self.websocket_client.disconnect()
        else:
            code, reason = self.close_info
            self.logger.warning(f"Connection ended (code={code}, reason={reason!r})")

        self.logger.info("✅ Shutdown complete")

def validate_config(config: dict) -> tuple[bool, list[str]]:
    """
    Validate configuration structure

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = list(config.get('load_errors', []))

    if 'websocket' not in config:
        errors.append("Missing required section: websocket")
        return (False, errors)

    ws_config = config['websocket']
    url = ws_config.get('url')
    if not url or urlparse(str(url)).scheme not in ('ws', 'wss'):
        errors.append("Config error: websocket.url must be a ws:// or wss:// URL")

    numeric_checks = [
        ('websocket.ping_interval_ms', ws_config.get('ping_interval_ms')),
        ('websocket.pong_timeout_ms', ws_config.get('pong_timeout_ms')),
        ('websocket.close_timeout', ws_config.get('close_timeout')),
    ]

    for key, value in numeric_checks:
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            errors.append(f"Config error: {key} must be a positive number")

    level = config.get('logging', {}).get('level', "INFO")
    if str(level).upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        errors.append(f"Config error: logging.level '{level}' is not a valid level")

    return (len(errors) == 0, errors)

def load_config(project_root: Path = None) -> dict:
    """
    Load configuration from files and environment

    Args:
        project_root: Directory holding config/ (defaults to this file's dir)

    Returns:
        Configuration dictionary
    """
    project_root = project_root or Path(__file__).parent
    load_dotenv(project_root / "config" / "secrets.env")

    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}

    config_path = project_root / "config" / "config.yaml"
    if config_path.exists():
        with open(config_path) as f:
            loaded = yaml.safe_load(f) or {}
        if isinstance(loaded, dict):
            for section, values in loaded.items():
                if isinstance(values, dict):
                    config.setdefault(section, {}).update(values)
                else:
                    config[section] = values
        else:
            config['load_errors'] = [
                f"Config error: {config_path.name} must contain a mapping, "
                f"got {type(loaded).__name__}"
            ]

    for env_name, (section, key, convert) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            try:
                value = convert(value)
            except ValueError:
                # Kept as a string so validate_config reports it
                pass
            config.setdefault(section, {})[key] = value

    # Pong timeout follows the ping interval unless set explicitly
    ws_config = config['websocket']
    if ws_config.get('pong_timeout_ms') is None:
        ws_config['pong_timeout_ms'] = ws_config.get('ping_interval_ms')

    return config

def handle_shutdown(signum=None, frame=None):
    """Handle shutdown signals"""
    print("\n🛑 Received shutdown signal")
    shutdown_event.set()

async def main():
    """Main entry point"""
    logger = setup_logger("Main")

    try:
        logger.info("Loading configuration...")
        config = load_config()

        is_valid, errors = validate_config(config)
        if not is_valid:
            logger.error("❌ Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return

        log_config = config.get('logging', {})
        configure_logging(log_config.get('level', "INFO"), log_config.get('file'))

        app = PingwatchApp(config)
        await app.run()

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise

if __name__ == "__main__":
    # Setup signal handlers
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
