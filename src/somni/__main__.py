"""somni command line entry point.

    python -m somni interpret --persona jung --knowledge kb.json dream.txt
"""

from somni.cli.app import cli

if __name__ == "__main__":
    cli()
