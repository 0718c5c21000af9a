from peal.state.store import (
    RunState,
    current_commit,
    load_resumable_state,
    load_state,
    save_state,
    state_file_path,
)

__all__ = [
    "RunState",
    "current_commit",
    "load_resumable_state",
    "load_state",
    "save_state",
    "state_file_path",
]
