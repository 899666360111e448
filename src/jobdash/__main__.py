"""Allow ``python -m jobdash``."""

from jobdash import cli

if __name__ == "__main__":
    cli.app()
