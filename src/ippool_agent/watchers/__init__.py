"""Watch sources and the resource cache used by the ippool agent."""

from .base import WatchSource  # noqa: F401
from .kube import IPPOOL_RESOURCE, KubernetesPoolSource, ResourceRef  # noqa: F401
from .resource import ResourceWatcher  # noqa: F401

__all__ = [
    "IPPOOL_RESOURCE",
    "KubernetesPoolSource",
    "ResourceRef",
    "ResourceWatcher",
    "WatchSource",
]
