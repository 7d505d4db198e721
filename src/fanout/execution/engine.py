"""Execution engine contract + a reference schema executor.

Learn: The dispatcher never interprets operations itself. It hands each
subscriber's operation, its context and a single-event source to an
Executor and takes at most one result from what comes back:

- a OneShotStream[ExecutionResult] — zero items means "filtered out"
- anything else (e.g. an ExecutionResult carrying errors) — the operation
  could not run, and the subscriber is skipped

A query-language engine plugs in by implementing Executor. The reference
SchemaExecutor resolves operations against named subscription fields:

    schema = SubscriptionSchema()

    @schema.subscription("chat", topics=["chat"],
                         filter=lambda root, args, ctx: root["type"] == args["type"])
    def chat(root, args, context):
        return root
"""

import importlib
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from fanout.errors import ProtocolError
from fanout.execution.source import SingleEventSource
from fanout.schemas.subscription import ExecutionResult, OperationRequest
from fanout.streams import OneShotStream

Predicate = Callable[[Any, dict, dict], Union[bool, Awaitable[bool]]]
Resolver = Callable[[Any, dict, dict], Any]
Topics = Union[list[str], Callable[[dict, dict], list[str]]]

ExecutionOutcome = Union[OneShotStream[ExecutionResult], ExecutionResult]


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it as-is."""
    if inspect.isawaitable(value):
        return await value
    return value


class Executor(ABC):
    """Capability interface for the execution engine."""

    @abstractmethod
    async def execute(
        self,
        operation: OperationRequest,
        context: dict,
        source: SingleEventSource,
    ) -> ExecutionOutcome:
        """Run operation against the events in source."""

    @abstractmethod
    def topics_for(self, operation: OperationRequest, context: dict) -> list[str]:
        """Event names the operation listens to. Raises ProtocolError if unknown."""


@dataclass
class SubscriptionField:
    name: str
    topics: Topics
    resolve: Optional[Resolver] = None
    filter: Optional[Predicate] = None

    def topics_for(self, args: dict, context: dict) -> list[str]:
        if callable(self.topics):
            return list(self.topics(args, context))
        return list(self.topics)


class SubscriptionSchema:
    """Registry of subscription fields by name."""

    def __init__(self, fields: Optional[list[SubscriptionField]] = None):
        self._fields: dict[str, SubscriptionField] = {}
        for field in fields or []:
            self.add(field)

    def add(self, field: SubscriptionField) -> SubscriptionField:
        self._fields[field.name] = field
        return field

    def get(self, name: str) -> Optional[SubscriptionField]:
        return self._fields.get(name)

    def names(self) -> list[str]:
        return sorted(self._fields)

    def subscription(
        self,
        name: str,
        *,
        topics: Topics,
        filter: Optional[Predicate] = None,
    ) -> Callable[[Resolver], Resolver]:
        """Decorator: register the decorated function as the field's resolver."""

        def decorator(resolve: Resolver) -> Resolver:
            self.add(SubscriptionField(name=name, topics=topics, resolve=resolve, filter=filter))
            return resolve

        return decorator


class SchemaExecutor(Executor):
    """Resolve operations against a SubscriptionSchema.

    Learn: The field is picked by operationName, falling back to the query
    text itself; variables become the resolver/filter args. Each event
    from the source becomes one ExecutionResult unless the filter rejects
    it. Filter and resolver errors propagate out of the stream — the
    dispatcher turns them into ExecutionFailure for that subscriber only.
    """

    def __init__(self, schema: SubscriptionSchema):
        self.schema = schema

    def _field_name(self, operation: OperationRequest) -> str:
        return (operation.operation_name or operation.query).strip()

    def topics_for(self, operation: OperationRequest, context: dict) -> list[str]:
        name = self._field_name(operation)
        field = self.schema.get(name)
        if field is None:
            raise ProtocolError(f"Unknown subscription '{name}'")
        return field.topics_for(operation.variables, context)

    async def execute(
        self,
        operation: OperationRequest,
        context: dict,
        source: SingleEventSource,
    ) -> ExecutionOutcome:
        name = self._field_name(operation)
        field = self.schema.get(name)
        if field is None:
            return ExecutionResult(errors=[f"Unknown subscription '{name}'"])

        args = operation.variables
        events = source.subscribe(field.topics_for(args, context))

        async def load() -> list[ExecutionResult]:
            results = []
            async for event in events:
                root = event.payload
                if field.filter is not None:
                    if not await maybe_await(field.filter(root, args, context)):
                        continue
                if field.resolve is None:
                    value = root
                else:
                    value = await maybe_await(field.resolve(root, args, context))
                results.append(ExecutionResult(data=value))
            return results

        return OneShotStream(loader=load)


def load_schema(path: str) -> SubscriptionSchema:
    """Import a schema from "package.module:attribute". Empty path → empty schema."""
    if not path:
        return SubscriptionSchema()

    module_name, _, attribute = path.partition(":")
    if not attribute:
        raise ValueError(f"Schema path must look like 'module:attribute', got '{path}'")

    module = importlib.import_module(module_name)
    schema = getattr(module, attribute)
    if not isinstance(schema, SubscriptionSchema):
        raise TypeError(f"{path} is not a SubscriptionSchema")
    return schema
