from .protocol import RegistryStore, ExecutionLogStore

__all__ = ["RegistryStore", "ExecutionLogStore"]
