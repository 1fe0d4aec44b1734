"""CLI entry point for vidgenie.cli module.

Enables execution via: python -m vidgenie.cli reset-credits [--dry-run] [-v]
"""

import sys

from vidgenie.cli.reset_credits import main as reset_credits_main

COMMANDS = {
    "reset-credits": reset_credits_main,
}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in COMMANDS:
        print(f"Usage: python -m vidgenie.cli {{{','.join(COMMANDS)}}} [OPTIONS]", file=sys.stderr)
        return 2
    return COMMANDS[argv[0]](argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
