"""Hook registry and lifecycle dispatch."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import logging
import pkgutil
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import ModuleType
from typing import Any

from flowhooks.config import FlowHooksConfig, load_effective_config
from flowhooks.context import ContextFactory, ExecutionContext
from flowhooks.contract import HookDescriptor
from flowhooks.errors import HookAlreadyRegisteredError, HookNotFoundError, HookValidationError
from flowhooks.events import LifecycleEvent, event_value
from flowhooks.executor import HookExecutor
from flowhooks.models import (
    DispatchReport,
    ExecutionOutcome,
    HookSettings,
    HookSettingsFile,
    HookStatusEntry,
    HookStatusSnapshot,
    SkipReason,
)
from flowhooks.settings import HookSettingsStore
from flowhooks.storage.base import HookDataStore
from flowhooks.validator import HookValidator

logger = logging.getLogger(__name__)


@dataclass
class HookEntry:
    name: str
    descriptor: HookDescriptor
    enabled: bool
    registered_at: datetime
    source: str = "programmatic"


def _storage_from_config(config: FlowHooksConfig, root: Path) -> HookDataStore | None:
    if not config.storage.persist_results:
        return None
    if config.storage.backend != "sqlite":
        raise ValueError(f"Unsupported storage backend: {config.storage.backend}")
    from flowhooks.storage import SQLiteHookStore

    return SQLiteHookStore(root / config.storage.sqlite_path)


class HookManager:
    """Registry of hooks plus fan-out of lifecycle events.

    Construct one per workflow process and pass it around; call
    ``initialize()`` before dispatching and ``shutdown()`` when done.
    """

    def __init__(
        self,
        config: FlowHooksConfig | None = None,
        *,
        root: str | Path = ".",
        storage: HookDataStore | None = None,
        executor: HookExecutor | None = None,
        validator: HookValidator | None = None,
        context_factory: ContextFactory | None = None,
        settings_store: HookSettingsStore | None = None,
    ) -> None:
        self.config = config or FlowHooksConfig()
        self.root = Path(root)
        self.storage = storage
        self.executor = executor or HookExecutor(
            default_timeout_ms=self.config.executor.default_timeout_ms,
            max_concurrent=self.config.executor.max_concurrent,
        )
        self.validator = validator or HookValidator(
            strict=self.config.validator.strict,
            max_timeout_ms=self.config.validator.max_timeout_ms,
        )
        self.context_factory = context_factory or ContextFactory()
        default_path = self.config.settings.default_path
        self.settings_store = settings_store or HookSettingsStore(
            self.root / self.config.settings.path,
            default_path=self.root / default_path if default_path else None,
        )
        self.settings = HookSettingsFile()
        self.discovery_errors: dict[str, str] = {}
        self._hooks: dict[str, HookEntry] = {}
        self._initialized = False

    @classmethod
    def from_repo(
        cls,
        repo_path: str | Path,
        system_defaults: dict | None = None,
        runtime_override: dict | None = None,
        storage: HookDataStore | None = None,
    ) -> HookManager:
        config = load_effective_config(
            repo_path=repo_path,
            system_defaults=system_defaults,
            runtime_override=runtime_override,
        )
        root = Path(repo_path)
        return cls(config=config, root=root, storage=storage or _storage_from_config(config, root))

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        self.settings = self.settings_store.load()
        logger.info("Loaded hook settings (source=%s, system_enabled=%s)", self.settings_store.last_source, self.settings.enabled)
        # Hooks registered before initialize() pick up their persisted flag now.
        for entry in self._hooks.values():
            entry.enabled = self._persisted_enabled(entry.name)

        loaded = 0
        if self.config.discovery.builtin_package:
            loaded += self._discover_package(self.config.discovery.builtin_package)
        for hook_dir in self.config.discovery.hook_dirs:
            loaded += self._discover_directory(self.root / hook_dir)
        self._initialized = True
        logger.info("Hook manager ready: %s hooks (%s discovered, %s discovery errors)", len(self._hooks), loaded, len(self.discovery_errors))

    def shutdown(self) -> None:
        self.executor.shutdown()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _persisted_enabled(self, name: str) -> bool:
        settings = self.settings.hooks.get(name)
        return settings.enabled if settings is not None else True

    def register_hook(self, name: str, descriptor: Any, *, source: str = "programmatic") -> HookEntry:
        if name in self._hooks:
            raise HookAlreadyRegisteredError(name)

        result = self.validator.validate(descriptor)
        if not result.valid or result.descriptor is None:
            raise HookValidationError(name, result.errors, result.warnings)
        for warning in result.warnings:
            logger.warning("Hook %s: %s", name, warning)

        entry = HookEntry(
            name=name,
            descriptor=result.descriptor,
            enabled=self._persisted_enabled(name),
            registered_at=datetime.now(UTC),
            source=source,
        )
        self._hooks[name] = entry
        logger.info("Registered hook: %s (events=%s, enabled=%s)", name, ",".join(entry.descriptor.events), entry.enabled)
        return entry

    def unregister_hook(self, name: str) -> bool:
        entry = self._hooks.pop(name, None)
        if entry is not None:
            logger.info("Unregistered hook: %s", name)
        return entry is not None

    def get_hook(self, name: str) -> HookEntry:
        try:
            return self._hooks[name]
        except KeyError:
            raise HookNotFoundError(name) from None

    def hook_names(self) -> list[str]:
        return sorted(self._hooks)

    # ------------------------------------------------------------------
    # Built-in discovery
    # ------------------------------------------------------------------

    def _register_module(self, module: ModuleType, default_name: str) -> bool:
        hook_cls = getattr(module, "HOOK_CLASS", None)
        if hook_cls is None:
            return False
        name = getattr(module, "NAME", default_name)
        try:
            self.register_hook(name, hook_cls(), source="builtin")
        except Exception as exc:  # noqa: BLE001 - one bad hook must not abort startup
            logger.error("Failed to register built-in hook %s: %s", name, exc)
            self.discovery_errors[name] = str(exc)
            return False
        return True

    def _discover_package(self, package_name: str) -> int:
        try:
            package = importlib.import_module(package_name)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to import hook package %s: %s", package_name, exc)
            self.discovery_errors[package_name] = str(exc)
            return 0

        loaded = 0
        for info in sorted(pkgutil.iter_modules(getattr(package, "__path__", [])), key=lambda item: item.name):
            if info.name.startswith("_"):
                continue
            default_name = info.name.replace("_", "-")
            try:
                module = importlib.import_module(f"{package_name}.{info.name}")
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to import built-in hook %s: %s", info.name, exc)
                self.discovery_errors[default_name] = str(exc)
                continue
            loaded += self._register_module(module, default_name)
        return loaded

    def _discover_directory(self, directory: Path) -> int:
        if not directory.is_dir():
            logger.debug("Hook directory %s does not exist", directory)
            return 0

        loaded = 0
        for py_file in sorted(directory.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            default_name = py_file.stem.replace("_", "-")
            try:
                spec = importlib.util.spec_from_file_location(f"flowhooks_ext_{py_file.stem}", str(py_file))
                if spec is None or spec.loader is None:
                    continue
                module = importlib.util.module_from_spec(spec)
                spec.loader.exec_module(module)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to load hook file %s: %s", py_file, exc)
                self.discovery_errors[default_name] = str(exc)
                continue
            loaded += self._register_module(module, default_name)
        return loaded

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        event: str | LifecycleEvent,
        payload: Any = None,
        services: Mapping[str, Any] | None = None,
    ) -> DispatchReport:
        """Fan ``event`` out to every enabled hook that declares it.

        Handler failures, timeouts and concurrency rejections are captured in
        the report and never raised. Returns once every hook has settled.
        """
        name = event_value(event)
        if not self.settings.enabled:
            logger.debug("Hook system disabled, skipping dispatch of %s", name)
            return DispatchReport(event=name)

        merged_services: dict[str, Any] = {}
        if self.storage is not None:
            merged_services["storage"] = self.storage
        merged_services.update(services or {})
        base = self.context_factory.build(name, payload, merged_services)

        interested = [entry for entry in list(self._hooks.values()) if entry.descriptor.declares(name)]
        outcomes = await asyncio.gather(*(self._run_entry(entry, name, base) for entry in interested))

        report = DispatchReport(
            event=name,
            outcomes=list(outcomes),
            executed_names=[outcome.hook_name for outcome in outcomes if not outcome.skipped],
            skipped_names=[outcome.hook_name for outcome in outcomes if outcome.skipped],
        )
        logger.info(
            "Dispatched %s: executed=%s skipped=%s all_succeeded=%s",
            name,
            len(report.executed_names),
            len(report.skipped_names),
            report.all_succeeded,
        )
        return report

    async def _run_entry(self, entry: HookEntry, event: str, base: ExecutionContext) -> ExecutionOutcome:
        if not entry.enabled:
            return ExecutionOutcome(
                hook_name=entry.name,
                event=event,
                success=True,
                skipped=True,
                reason=SkipReason.DISABLED,
            )

        settings = self.settings.hooks.get(entry.name)
        context = self.context_factory.for_hook(base, entry.name, settings.config if settings else None)
        outcome = await self.executor.execute(entry.descriptor, event, context)
        if outcome.success and not outcome.skipped and entry.descriptor.store_results:
            self._store_result(entry.name, event, outcome.data)
        return outcome

    def _store_result(self, hook_name: str, event: str, data: Any) -> None:
        if self.storage is None or data is None:
            return
        try:
            self.storage.store_hook_data(hook_name, event, data)
        except Exception as exc:  # noqa: BLE001 - storage problems never fail a dispatch
            logger.error("Failed to store data from hook %s on %s: %s", hook_name, event, exc)

    def emit(self, event: str | LifecycleEvent, payload: Any = None, services: Mapping[str, Any] | None = None) -> DispatchReport:
        """Synchronous ``dispatch`` for callers without a running event loop."""
        return asyncio.run(self.dispatch(event, payload, services))

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def set_hook_enabled(self, name: str, enabled: bool) -> None:
        entry = self.get_hook(name)
        entry.enabled = enabled
        current = self.settings.hooks.get(name) or HookSettings()
        self.settings.hooks[name] = current.model_copy(update={"enabled": enabled})
        self.settings_store.save(self.settings)
        logger.info("Hook %s %s", name, "enabled" if enabled else "disabled")

    def set_system_enabled(self, enabled: bool) -> None:
        self.settings.enabled = enabled
        self.settings_store.save(self.settings)
        logger.info("Hook system %s", "enabled" if enabled else "disabled")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_hook_status(self) -> HookStatusSnapshot:
        hooks = [
            HookStatusEntry(
                name=entry.name,
                enabled=entry.enabled,
                events=list(entry.descriptor.events),
                version=entry.descriptor.version,
                description=entry.descriptor.description,
                source=entry.source,
                registered_at=entry.registered_at,
            )
            for entry in sorted(self._hooks.values(), key=lambda item: item.name)
        ]
        enabled_count = sum(1 for hook in hooks if hook.enabled)
        return HookStatusSnapshot(
            initialized=self._initialized,
            system_enabled=self.settings.enabled,
            total=len(hooks),
            enabled_count=enabled_count,
            disabled_count=len(hooks) - enabled_count,
            in_flight=self.executor.in_flight,
            settings_source=self.settings_store.last_source,
            hooks=hooks,
            discovery_errors=dict(self.discovery_errors),
        )
