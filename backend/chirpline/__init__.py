"""
Chirpline Backend — Application Package
=========================================

HTTP bootstrap for the Chirpline social app: the ingress pipeline every
request passes through, the route-group mount points, the single-page-app
fallback, and the server lifecycle.

    ┌─────────────────────────────────────┐
    │   Middleware (ingress pipeline)     │  ← headers, body/cookie parsing
    ├─────────────────────────────────────┤
    │   Route groups  │  SPA fallback     │  ← routing.py, routes/, spa.py
    ├─────────────────────────────────────┤
    │   Collaborators                     │  ← database.py, media.py
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
