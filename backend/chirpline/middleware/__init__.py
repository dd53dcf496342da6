# Middleware package init
"""
Chirpline Backend — Middleware Package
========================================

Middleware Chain (order matters!):
    Request → [Request ID] → [Logging] → [Security Headers] → [Body/Cookie Parse] → Dispatch

    1. Request ID first, so every later log line and error body can quote it
    2. Logging wraps the rest and records status and duration
    3. Security headers wrap the parser, so 4xx rejections carry them too
    4. Body/cookie parsing last, rejecting bad bodies before any route group

Responses travel back through the same layers in reverse.
"""
