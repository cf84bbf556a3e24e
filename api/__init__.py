"""Flask app exposing vote casting, verification and statistics."""

from .app import LoopThread, create_app

__all__ = ['LoopThread', 'create_app']
