"""
Entry point for running sessionlens as a module.

Usage:
    python -m sessionlens ingest --days 7
    python -m sessionlens detect

This is equivalent to:
    python -m sessionlens.cli.analytics_cli [args]
"""

import sys


def main():
    """Main entry point."""
    from sessionlens.cli.analytics_cli import main as cli_main
    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
