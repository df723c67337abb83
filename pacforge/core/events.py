# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List


class EventType(Enum):
    RUN_START = "run_start"
    RUN_END = "run_end"
    BATCH_FETCHED = "batch_fetched"
    BATCH_REVIEWED = "batch_reviewed"
    BATCH_BUILT = "batch_built"
    BATCH_INSTALLED = "batch_installed"
    BATCH_FAILED = "batch_failed"
    BATCH_PRUNED = "batch_pruned"
    BATCH_ABORTED = "batch_aborted"


class Event:
    def __init__(self, type: EventType, data: Dict[str, Any]):
        self.type = type
        self.data = data


class EventBus:
    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable[[Event], Any]]] = {}

    def subscribe(self, event_type: EventType, callback: Callable[[Event], Any]):
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def subscribe_all(self, callback: Callable[[Event], Any]):
        for event_type in EventType:
            self.subscribe(event_type, callback)

    async def emit(self, event: Event):
        if event.type in self._subscribers:
            for callback in self._subscribers[event.type]:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
