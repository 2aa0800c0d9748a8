"""Main entry point for the varietymcp CLI."""

import asyncio
import sys

from varietymcp.api.cli.parsers import create_main_parser, setup_subparsers
from varietymcp.api.cli.utils.rich_output import RichOutputFormatter


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and run the selected command."""
    parser = create_main_parser()
    setup_subparsers(parser)
    args = parser.parse_args(argv)

    if not getattr(args, "command", None):
        parser.print_help()
        sys.exit(1)

    formatter = RichOutputFormatter(verbose=getattr(args, "verbose", False))

    if args.command == "acquire":
        from varietymcp.api.cli.commands.acquire import acquire_command

        asyncio.run(acquire_command(args, formatter))
    elif args.command == "discover":
        from varietymcp.api.cli.commands.discover import discover_command

        asyncio.run(discover_command(args, formatter))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
