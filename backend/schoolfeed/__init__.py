"""SchoolFeed - unified notification feed for the school dashboard"""

__version__ = "1.0.0"
