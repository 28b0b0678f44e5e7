"""
slide_sync: client-side slide synchronization and artifact caching.

Keeps a viewer's slide position in step with the presenter over a realtime
push channel, falls back to polling when push fails, and caches slide
artifacts locally around the live position.
"""

__version__ = '1.0.0'
