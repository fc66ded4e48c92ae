"""Allow ``python -m fragments``."""

from fragments.cli.app import app

if __name__ == "__main__":
    app()
