"""Entry point for CLI invocation via python -m."""

from SourceFetch.cli import main

if __name__ == "__main__":
    main()
