import argparse

from registration_validator.config import settings
from registration_validator.store import ValidationStore


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--database-url", default=settings.database_url, help="Defaults to DATABASE_URL")
    args = parser.parse_args()

    store = ValidationStore.from_url(args.database_url)
    store.init_schema()
    print(f"Schema ready: {store.engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
