import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify

logger = logging.getLogger(__name__)

DATABASE_CHECK_TIMEOUT = 5.0  # seconds


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _running_loop(bot) -> Optional[asyncio.AbstractEventLoop]:
    # Before bot.run() discord.py exposes a sentinel that raises on any attribute access
    try:
        loop = bot.loop
        return loop if loop.is_running() else None
    except AttributeError:
        return None


def create_app(bot, *, version: str = "1.0.0") -> Flask:
    """Health endpoints for the container platform's probes.

    ``bot`` is the running ThreadKeeperBot; its event loop lives in another
    thread, so the database check is scheduled onto that loop.
    """
    app = Flask(__name__)
    started = time.monotonic()

    @app.route('/health')
    def health():
        loop = _running_loop(bot)
        if loop is None:
            return jsonify({
                "status": "unhealthy",
                "error": "bot event loop is not running",
                "timestamp": _now(),
            }), 503

        try:
            future = asyncio.run_coroutine_threadsafe(bot.db.ping(), loop)
            future.result(timeout=DATABASE_CHECK_TIMEOUT)
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return jsonify({
                "status": "unhealthy",
                "error": str(e) or type(e).__name__,
                "timestamp": _now(),
            }), 500

        return jsonify({
            "status": "healthy",
            "bot": "ready" if bot.is_ready() else "not_ready",
            "database": "connected",
            "keep_alive": bot.runner.status_snapshot(),
            "uptime": time.monotonic() - started,
            "timestamp": _now(),
            "version": version,
        })

    @app.route('/ready')
    def ready():
        is_ready = bot.is_ready()
        return jsonify({"ready": is_ready, "timestamp": _now()}), (200 if is_ready else 503)

    return app


def start_server_thread(bot, port: int = 3000, *, version: str = "1.0.0") -> threading.Thread:
    """Starts the health server in the background so the bot's loop isn't blocked."""
    app = create_app(bot, version=version)
    server_thread = threading.Thread(
        target=lambda: app.run(host='0.0.0.0', port=port, use_reloader=False),
        name="health-server",
    )
    server_thread.daemon = True # Allows the bot to exit even if this thread is running
    server_thread.start()
    logger.info("Health server running on port %d", port)
    return server_thread
