"""Entry point for ``python -m logscout``."""

from logscout.cli import run

if __name__ == "__main__":
    run()
