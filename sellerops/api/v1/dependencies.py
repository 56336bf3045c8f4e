"""Presentation-layer dependencies.

Stores are created once by the lifespan (or by an AutomationRuntime) and
read from app.state here; routes never construct infrastructure.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from sellerops.application.interfaces.stores import IExecutionStore, IJobQueue
from sellerops.domain.exceptions import StoreUnavailableException


def get_job_queue(request: Request) -> IJobQueue:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise StoreUnavailableException("job store", "not initialized")
    return queue


def get_execution_store(request: Request) -> IExecutionStore:
    store = getattr(request.app.state, "execution_store", None)
    if store is None:
        raise StoreUnavailableException("execution store", "not initialized")
    return store


JobQueueDep = Annotated[IJobQueue, Depends(get_job_queue)]
ExecutionStoreDep = Annotated[IExecutionStore, Depends(get_execution_store)]
