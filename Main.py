#!/usr/bin/env python3
"""

Usage:
    python Main.py [--url example.com] [--reaction-error-ms 120]

Or
    python -m server_clock [--url example.com] [--reaction-error-ms 120]
"""

from server_clock.__main__ import main

if __name__ == "__main__":
    main()
