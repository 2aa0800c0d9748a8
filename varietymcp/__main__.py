"""Entry point for running varietymcp as a module: python -m varietymcp."""

from varietymcp.api.cli.main import main

if __name__ == "__main__":
    main()
