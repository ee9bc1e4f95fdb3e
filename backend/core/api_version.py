"""
API Versioning Configuration

All routers are mounted under /api/{version}; create_versioned_router applies
the prefix so individual routers only name their own path.
"""
import os
from fastapi import APIRouter

# Current API version
API_VERSION = os.getenv("API_VERSION", "v1")


def create_versioned_router(prefix="", version=None, tags=None, **kwargs):
    """
    Create an APIRouter under the versioned prefix.

    Args:
        prefix: Router prefix appended to /api/{version}
        version: API version (defaults to current API_VERSION)
        tags: Router tags
        **kwargs: Additional APIRouter arguments
    """
    full_prefix = get_versioned_prefix(prefix, version).rstrip("/")
    return APIRouter(prefix=full_prefix, tags=tags or [], **kwargs)


def get_api_version():
    """Get the current API version."""
    return API_VERSION


def get_versioned_prefix(path="", version=None):
    if version is None:
        version = API_VERSION
    if path:
        return "/api/{}/{}".format(version, path.lstrip('/'))
    return "/api/{}".format(version)
