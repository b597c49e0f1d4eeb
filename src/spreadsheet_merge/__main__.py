"""Allow ``python -m spreadsheet_merge``."""

from spreadsheet_merge import cli

if __name__ == "__main__":
    cli.app()
