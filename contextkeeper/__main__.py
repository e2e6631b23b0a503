"""Entry point for ``python -m contextkeeper``."""

from contextkeeper.cli.commands import app

if __name__ == "__main__":
    app()
