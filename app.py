# app.py
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
import os
import logging
import sys

load_dotenv()

from config import Config

from routes.history_routes import history_bp
import routes.socket_routes  # noqa: F401
from services.context import build_context
from services.realtime import ASYNC_MODE, init_app as init_socketio, socketio


def _configure_logging(config):
    log_format = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    handlers = [logging.StreamHandler(sys.stdout)]
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE))
    logging.basicConfig(level=logging.INFO, format=log_format, handlers=handlers)


def create_app(config=None, context=None):
    """Build the Flask app and attach the relay context.

    ``context`` lets callers (tests, ``__main__``) own the lifetime of the
    store and bus handles; when omitted one is built from ``config``.
    """
    config = config or Config
    app = Flask(__name__)
    app.config.from_object(config)

    # Honra los encabezados del proxy TLS.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1, x_port=1)

    if not app.debug:
        _configure_logging(config)

    if context is None:
        context = build_context(config)
    app.extensions['relay'] = context

    app.register_blueprint(history_bp)
    init_socketio(app)

    context.start(socketio)
    return app


def _run_options(config):
    options = {}
    if ASYNC_MODE == "threading":
        # Werkzeug sirve Socket.IO en modo threading.
        options["allow_unsafe_werkzeug"] = True
    if config.SSL_CERT_FILE and config.SSL_KEY_FILE:
        if ASYNC_MODE == "threading":
            options["ssl_context"] = (config.SSL_CERT_FILE, config.SSL_KEY_FILE)
        else:
            options["certfile"] = config.SSL_CERT_FILE
            options["keyfile"] = config.SSL_KEY_FILE
    return options


# Objeto WSGI para Gunicorn
running_tests = "PYTEST_CURRENT_TEST" in os.environ or "pytest" in sys.modules
app = None if running_tests or __name__ == "__main__" else create_app()

if __name__ == '__main__':
    try:
        relay_context = build_context(Config)
    except Exception:  # noqa: BLE001 - sin store/bus no hay servicio
        _configure_logging(Config)
        logging.getLogger(__name__).exception('Failed to start server')
        sys.exit(1)

    with relay_context:
        socketio.run(
            create_app(Config, relay_context),
            host='0.0.0.0',
            port=Config.PORT,
            **_run_options(Config),
        )
