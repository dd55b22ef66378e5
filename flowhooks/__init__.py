"""Hook orchestration engine for task-master flow workflows."""

from flowhooks.context import CancellationToken, ContextFactory, ExecutionContext
from flowhooks.contract import HookDescriptor
from flowhooks.errors import HookAlreadyRegisteredError, HookError, HookNotFoundError, HookValidationError
from flowhooks.events import LifecycleEvent, event_to_method_name, method_name_to_event
from flowhooks.executor import HookExecutor
from flowhooks.manager import HookManager
from flowhooks.models import DispatchReport, ExecutionOutcome, SkipReason
from flowhooks.validator import HookValidator, ValidationResult

__all__ = [
    "CancellationToken",
    "ContextFactory",
    "DispatchReport",
    "ExecutionContext",
    "ExecutionOutcome",
    "HookAlreadyRegisteredError",
    "HookDescriptor",
    "HookError",
    "HookExecutor",
    "HookManager",
    "HookNotFoundError",
    "HookValidationError",
    "HookValidator",
    "LifecycleEvent",
    "SkipReason",
    "ValidationResult",
    "event_to_method_name",
    "method_name_to_event",
]
