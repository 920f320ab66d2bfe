#!/usr/bin/env python3
"""
albumqueue HTTP Server Runner
"""

import os

from albumqueue.crosscutting.config import load_settings
from albumqueue.crosscutting.logging import setup_logging
from albumqueue.interfaces.cli import create_coordinator
from albumqueue.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    settings = load_settings()
    setup_logging(settings.log_level)
    coordinator = create_coordinator(settings, os.getenv('ALBUMQUEUE_PROVIDER', 'spotify'))
    server = HTTPServer(
        coordinator,
        host='localhost',
        port=int(os.getenv('ALBUMQUEUE_PORT', '3000')),
        debug=False
    )
    server.run()


if __name__ == '__main__':
    main()
