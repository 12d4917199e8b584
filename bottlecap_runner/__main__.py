#!/usr/bin/env python3
"""BottleCap Runner - ``python -m bottlecap_runner`` entry point."""

from .cli import main


if __name__ == "__main__":
    main()
