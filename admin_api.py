# admin_api.py: minimal admin HTTP surface: status + shutdown
import logging
import threading

from flask import Flask, current_app, jsonify, request
from werkzeug.serving import make_server

logger = logging.getLogger(__name__)


def authed() -> bool:
    return request.headers.get("X-API-Key", "") == current_app.config["II_API_KEY"]


def create_app(manager, api_key: str) -> Flask:
    """`manager` only needs .status() and .shutdown()."""
    app = Flask(__name__)
    app.config["II_API_KEY"] = api_key

    @app.before_request
    def _require_key():
        if request.path.startswith("/api/") and not authed():
            return jsonify({"error": "unauthorized"}), 401
        return None

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/api/status")
    def api_status():
        return jsonify(manager.status())

    @app.post("/api/shutdown")
    def api_shutdown():
        logger.info("Shutdown requested via admin API from %s", request.remote_addr)
        manager.shutdown()
        return jsonify({"ok": True})

    return app


class AdminServer:
    """Serves create_app() from a daemon thread until stop()."""

    def __init__(self, manager, host: str, port: int, api_key: str):
        self.host = host
        self.port = port
        self.app = create_app(manager, api_key)
        self._server = None
        self._thread = None

    def start(self) -> None:
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.port
        self._thread = threading.Thread(target=self._server.serve_forever, name="admin-http", daemon=True)
        self._thread.start()
        logger.info("Admin API listening on http://%s:%s", self.host, self.port)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)
        self._server = None
        logger.info("Admin API stopped")
