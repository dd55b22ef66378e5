from flowhooks.storage.base import HookDataStore
from flowhooks.storage.sqlite import SQLiteHookStore

__all__ = ["HookDataStore", "SQLiteHookStore"]
