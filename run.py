#!/usr/bin/env python3
"""
Development entry point for the TKA invoice API.
"""
import sys

from tka_invoice import create_app

# Create application instance
app = create_app()

if __name__ == '__main__':
    # Get port from command line argument or use default
    port = 5010
    if len(sys.argv) > 2 and sys.argv[1] == '--port':
        try:
            port = int(sys.argv[2])
        except ValueError:
            print(f"Invalid port number: {sys.argv[2]}")
            sys.exit(1)

    app.run(debug=True, port=port)
