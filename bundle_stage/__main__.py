"""Allow ``python -m bundle_stage``."""

from .cli import app

app()
