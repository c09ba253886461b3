"""Allow ``python -m rolling_fetch``."""

from rolling_fetch.cli.app import app

app()
