"""Allow running as ``python -m dupfind``."""

from .cli import main

main()
