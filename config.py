import os


def _env_int(name, default):
    raw = os.getenv(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY')
    PORT = _env_int('PORT', 3000)

    # Backends: "redis" | "mysql" | "memory" para el store, "redis" | "memory" para el bus
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'redis').strip().lower()
    BUS_BACKEND = os.getenv('BUS_BACKEND', 'redis').strip().lower()

    REDIS_URL = os.getenv('REDIS_URL', 'redis://127.0.0.1:6379/0')
    MESSAGE_LIST_KEY = os.getenv('MESSAGE_LIST_KEY', 'chat:messages')
    PUBSUB_CHANNEL = os.getenv('PUBSUB_CHANNEL', 'chat:channel')
    BUS_RECONNECT_DELAY = float(os.getenv('BUS_RECONNECT_DELAY', 1.0))

    MAX_RETAINED = _env_int('MAX_RETAINED', 500)
    HISTORY_DEFAULT_LIMIT = _env_int('HISTORY_DEFAULT_LIMIT', 50)
    HISTORY_ON_CONNECT = _env_int('HISTORY_ON_CONNECT', 20)

    DB_HOST     = os.getenv('DB_HOST')
    DB_PORT     = _env_int('DB_PORT', 3306)
    DB_USER     = os.getenv('DB_USER')
    DB_PASSWORD = os.getenv('DB_PASSWORD')
    DB_NAME     = os.getenv('DB_NAME')
    DB_POOL_SIZE = _env_int('DB_POOL_SIZE', 5)

    # El certificado se provisiona fuera de la app; aquí sólo se pasan las rutas.
    SSL_CERT_FILE = os.getenv('SSL_CERT_FILE')
    SSL_KEY_FILE = os.getenv('SSL_KEY_FILE')

    LOG_FILE = os.getenv('LOG_FILE')

    BASEDIR = os.path.dirname(os.path.abspath(__file__))
