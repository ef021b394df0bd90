from . import deployments, health, sites

__all__ = ["deployments", "health", "sites"]
