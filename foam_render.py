#!/usr/bin/env python
"""CLI entry point for the foam ray marcher."""

from foam_raymarcher.render import main

if __name__ == "__main__":
    main()
