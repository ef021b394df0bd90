"""FastAPI dependencies resolving the services wired by the lifespan."""

from pathlib import Path

from fastapi import Request

from .queue import DeploymentQueue
from .store import DeploymentStateStore


def get_store(request: Request) -> DeploymentStateStore:
    return request.app.state.store


def get_queue(request: Request) -> DeploymentQueue:
    return request.app.state.queue


def get_public_root(request: Request) -> Path:
    return request.app.state.public_root


def get_domain_suffix(request: Request) -> str:
    return request.app.state.domain_suffix
