"""
Task registry: maps task type identifiers to fetch adapters.

The registry is an explicit object built once at startup and handed to the
orchestrator, so tests can register fakes without touching module state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .database import Account
from .errors import UnknownTaskError
from .paginator import FetchAllResult
from .schema import RunOptions
from .window import FetchWindow

ShardEnumerator = Callable[[str], List[str]]


class TaskAdapter(ABC):
    """Fetches (and persists) one task type's records for one window."""

    @abstractmethod
    def fetch_window(
        self,
        account: Account,
        window: FetchWindow,
        options: RunOptions,
        shard_key: str = "",
    ) -> FetchAllResult:
        ...


@dataclass
class TaskDefinition:
    task_type: str
    description: str
    adapter: TaskAdapter
    shards: Optional[ShardEnumerator] = None

    @property
    def sharded(self) -> bool:
        return self.shards is not None


class TaskRegistry:
    def __init__(self):
        self._tasks: Dict[str, TaskDefinition] = {}

    def register(self, definition: TaskDefinition) -> None:
        if definition.task_type in self._tasks:
            raise ValueError(f"Task type already registered: {definition.task_type}")
        self._tasks[definition.task_type] = definition

    def get(self, task_type: str) -> TaskDefinition:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise UnknownTaskError(task_type, known=self.task_types()) from None

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks

    def task_types(self) -> List[str]:
        """Registered task types in registration order."""
        return list(self._tasks)

    def describe(self) -> List[Dict[str, str]]:
        return [
            {
                "task_type": d.task_type,
                "description": d.description,
                "grain": "shop" if d.sharded else "account",
            }
            for d in self._tasks.values()
        ]


def build_default_registry(client, session_factory, sleep=None) -> TaskRegistry:
    """Register every built-in task type against one vendor client."""
    from .tasks import finance, orders, products, purchase, sales, shops, warehouse

    shop_keys = shops.active_shop_keys(session_factory)
    registry = TaskRegistry()
    for module in (orders, sales, purchase, warehouse, products, finance):
        for definition in module.definitions(client, session_factory, shop_keys, sleep=sleep):
            registry.register(definition)
    return registry
