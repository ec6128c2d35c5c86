from chatbox.runtime.runtime import ChatRuntime, TurnResult

__all__ = ["ChatRuntime", "TurnResult"]
