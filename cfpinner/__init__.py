"""cfpinner: locate which CDN edge nodes hold a cached copy of a resource."""

__version__ = "1.0.0"
