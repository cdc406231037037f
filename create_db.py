# Archivo: create_db.py
# Crea la base y la tabla ``messages`` para STORE_BACKEND=mysql.
from dotenv import load_dotenv

load_dotenv()

from config import Config
from services import db


def main():
    pool = db.create_pool(
        db.settings_from_config(Config),
        size=1,
        ensure_database=True,
    )
    db.init_schema(pool)
    print("Base de datos creada exitosamente.")


if __name__ == "__main__":
    main()
