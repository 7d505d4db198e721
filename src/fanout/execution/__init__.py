"""Execution layer — turns (operation, event) into at most one result.

Learn: This is the filtered-resolution step the dispatcher runs per
subscriber. The engine itself is pluggable (Executor); SchemaExecutor is
the in-repo reference used by the app and the tests.
"""

from fanout.execution.engine import (
    Executor,
    SchemaExecutor,
    SubscriptionField,
    SubscriptionSchema,
    load_schema,
)
from fanout.execution.source import SingleEventSource

__all__ = [
    "Executor",
    "SchemaExecutor",
    "SingleEventSource",
    "SubscriptionField",
    "SubscriptionSchema",
    "load_schema",
]
