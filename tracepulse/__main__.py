"""Main entry point for the tracepulse CLI."""

from tracepulse.cli.click_app import cli


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
