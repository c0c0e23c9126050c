"""Entry point for running the bot via ``python -m dropbot``."""

from dropbot.runtime import run_cli

if __name__ == "__main__":
    run_cli()
