from typing import Any, Mapping, Optional

from flask import Flask


from .cli import register_commands
from .config import DEFAULTS, StorageConfig
from .logging_config import setup_logging
from .repositories import Repositories
from .routes import api_bp



def create_app(config: Optional[Mapping[str, Any]] = None):
    """Application factory for the gig marketplace storage service."""
    app = Flask(__name__)

    app.config.setdefault("SECRET_KEY", "gigboard-secret")
    for key, value in DEFAULTS.items():
        app.config.setdefault(key, value)
    if config:
        app.config.update(config)
    app.config.from_prefixed_env("GIGBOARD")

    setup_logging(app.config["LOG_LEVEL"])
    app.extensions["gigboard"] = Repositories.from_config(StorageConfig.from_mapping(app.config))

    app.register_blueprint(api_bp)
    register_commands(app)

    return app


__all__ = ["create_app"]
