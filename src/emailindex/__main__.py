"""Allow ``python -m emailindex``."""

from emailindex.cli import run

run()
