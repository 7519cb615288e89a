#!/usr/bin/env python3
"""
radiodesk HTTP Server Runner
"""

from radiodesk.interfaces.http import main


if __name__ == '__main__':
    main()
