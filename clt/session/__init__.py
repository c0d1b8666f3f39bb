"""
Interactive recording and deterministic replay of shell sessions.

The recorder turns an operator's session into a document; the replay driver
runs a flattened document against an executor and collects actual output.
"""

from .executors import CallableExecutor, ShellExecutor
from .keys import Key, KeyDecoder, KeyKind
from .manager import SessionManager
from .player import ReplayDriver, replay
from .prompt import FixedDelayDetector, PromptDetector, PromptPatternDetector
from .recorder import RecorderState, RecordingResult, RecordingSession, SessionRecorder

__all__ = [
    "CallableExecutor",
    "ShellExecutor",
    "Key",
    "KeyDecoder",
    "KeyKind",
    "SessionManager",
    "ReplayDriver",
    "replay",
    "FixedDelayDetector",
    "PromptDetector",
    "PromptPatternDetector",
    "RecorderState",
    "RecordingResult",
    "RecordingSession",
    "SessionRecorder",
]
