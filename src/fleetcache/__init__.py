"""
fleetcache - offline asset cache for fleet maintenance records.

Keeps 3D model files, machine images and the application shell available
offline: a durable blob store, a generation-tagged asset cache, a fetch
interceptor and a command channel that writes pushed assets to both.
"""

__version__ = "0.1.0"
