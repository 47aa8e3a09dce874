"""CLI entry point for nanobanana.cli module.

Enables execution via: python -m nanobanana.cli
"""

from nanobanana.cli.cache_stats import main

if __name__ == "__main__":
    main()
