"""Application factory for a host app using the identity gateway."""

from typing import Any, Mapping, Optional

from flask import Flask

from . import config as default_config
from .app_logging import setup_logger
from .gateway import IdentityGateway
from .stores import util


def create_web_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Initialize and configure an app with the identity gateway attached."""
    app = Flask('camper_identity')
    app.config.from_object(default_config)
    if overrides:
        app.config.update(overrides)

    if app.config['LOG_JSON']:
        setup_logger(app.config['LOG_LEVEL'])

    IdentityGateway(app)

    if app.config['CREATE_DB'] and util.is_configured(app.config):
        with app.app_context():
            util.create_all()

    return app
