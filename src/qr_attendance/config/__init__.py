from .local_state_store import LocalStateStore

__all__ = ["LocalStateStore"]
