#!/usr/bin/env python3
"""
pgbox CLI.

This is a convenience wrapper for running the package directly from the project root.
For installed packages, use the pgbox command instead.
"""

from pgbox.__main__ import main

if __name__ == "__main__":
    main()
