"""CLI entry point for hotbuild.

Usage:
    hotbuild watch
    hotbuild --target HelloFunction build
    python -m hotbuild list
"""

import sys


def main() -> int:
    """Main entry point for the hotbuild CLI."""
    from hotbuild.cli import run_cli

    try:
        return run_cli(sys.argv[1:])
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
