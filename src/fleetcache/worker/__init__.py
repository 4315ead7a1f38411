"""
Asset worker package.

- network.py: httpx access to the origin
- routing.py: request tiers and cache keys
- interceptor.py: cache -> network -> placeholder waterfall
- messenger.py: CACHE_3D_MODEL command channel
- service.py: worker lifecycle (install, activate, fetch, message)
"""

from fleetcache.worker.interceptor import FetchInterceptor
from fleetcache.worker.messenger import CacheModelMessage, Messenger
from fleetcache.worker.network import NetworkFetcher
from fleetcache.worker.service import AssetWorker, open_worker

__all__ = [
    "AssetWorker",
    "CacheModelMessage",
    "FetchInterceptor",
    "Messenger",
    "NetworkFetcher",
    "open_worker",
]
