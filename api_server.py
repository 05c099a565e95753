#!/usr/bin/env python3
"""
Face Score API Server
Runs the Flask development server with embedded queue workers.
"""
from face_score.api.server import main

if __name__ == '__main__':
    main()
