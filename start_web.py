#!/usr/bin/env python3
"""Launch the clipcache server.

Usage:
    ./start_web.py              # Start server and open API docs
    ./start_web.py --no-browser # Start server only
    ./start_web.py --port 8080  # Use custom port
"""

import sys

from clipcache.cli import main


if __name__ == "__main__":
    sys.exit(main(["serve", *sys.argv[1:]]))
