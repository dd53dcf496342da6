# Routes package init
"""
Chirpline Backend — Route Groups
==================================

Route Inventory:
    - auth.py:           /api/auth/*
    - users.py:          /api/users/*
    - posts.py:          /api/posts/*
    - notifications.py:  /api/notifications/*

Everything else is answered by the SPA fallback (chirpline.spa).
"""

from typing import Dict

from fastapi import APIRouter

from chirpline.routes import auth, notifications, posts, users


def default_routers() -> Dict[str, APIRouter]:
    """The group routers mounted when create_app() is given none."""
    return {
        "auth": auth.router,
        "users": users.router,
        "posts": posts.router,
        "notifications": notifications.router,
    }
