"""Flask application factory."""

import json
import logging
import os
from flask import Flask
from flask_cors import CORS

BACKEND_DIR = os.path.join(os.path.dirname(__file__), "..")

DEFAULT_SETTINGS = {
    "GITLAB_URL": "https://gitlab.com",
    "GITLAB_TOKEN": None,
    "GITLAB_PROJECT_PATH": None,
    "METRICS_DATA_DIR": os.path.join(BACKEND_DIR, "data"),
    "CACHE_TTL_SECONDS": 300,
    "PAGE_DELAY_SECONDS": 0.1,
    "INCIDENT_LOOKBACK_DAYS": 60,
    "INCIDENT_LOOKAHEAD_DAYS": 30,
    "MAX_WORKERS": 6,
    "DEPLOYMENT_BRANCHES": [],
}

# metrics-config.json key -> app.config key
CONFIG_FILE_KEYS = {
    "cacheTtlSeconds": "CACHE_TTL_SECONDS",
    "pageDelaySeconds": "PAGE_DELAY_SECONDS",
    "incidentLookbackDays": "INCIDENT_LOOKBACK_DAYS",
    "incidentLookaheadDays": "INCIDENT_LOOKAHEAD_DAYS",
    "maxWorkers": "MAX_WORKERS",
    "deploymentBranches": "DEPLOYMENT_BRANCHES",
}

ENV_KEYS = ["GITLAB_URL", "GITLAB_TOKEN", "GITLAB_PROJECT_PATH", "METRICS_DATA_DIR"]


def load_metrics_config(app, config_path=None):
    """Load tuning settings from config/metrics-config.json, if present."""
    config_path = config_path or os.path.join(BACKEND_DIR, "config", "metrics-config.json")

    if not os.path.exists(config_path):
        app.logger.info("No metrics-config.json found, using default settings")
        return

    try:
        with open(config_path, "r") as f:
            config = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        app.logger.warning(f"Failed to load metrics config: {e}")
        return

    for file_key, config_key in CONFIG_FILE_KEYS.items():
        if file_key in config:
            app.config[config_key] = config[file_key]
    app.logger.info(f"Loaded metrics config from {config_path}")


def create_app(config=None):
    """Create and configure the Flask application.

    Settings are layered: defaults, then metrics-config.json, then
    environment variables, then the ``config`` mapping.
    """
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config.update(DEFAULT_SETTINGS)
    load_metrics_config(app, (config or {}).get("METRICS_CONFIG_PATH"))

    for key in ENV_KEYS:
        if os.environ.get(key):
            app.config[key] = os.environ[key]

    if config:
        app.config.update(config)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type"]
        }
    })

    # Register blueprints
    from app.api import cache, iterations, metrics
    app.register_blueprint(iterations.bp)
    app.register_blueprint(metrics.bp)
    app.register_blueprint(cache.bp)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
