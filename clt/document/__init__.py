"""
Session document model, file format and block resolution.

Documents are read from ``.rec`` session files and ``.recb`` block files;
replay results are written to ``.rep`` artifacts.
"""

from .models import (
    ActualDocument,
    ActualStep,
    BlockReferenceStep,
    CommandStep,
    CommentStep,
    Document,
    ExecutionStatus,
    FlattenedDocument,
    StepOrigin,
)
from .parser import (
    load_actual,
    load_document,
    parse,
    parse_actual,
    replay_file_path,
    save_actual,
    save_document,
    serialize,
    serialize_actual,
)
from .resolver import FileResolver, flatten

__all__ = [
    "ActualDocument",
    "ActualStep",
    "BlockReferenceStep",
    "CommandStep",
    "CommentStep",
    "Document",
    "ExecutionStatus",
    "FlattenedDocument",
    "StepOrigin",
    "FileResolver",
    "flatten",
    "load_actual",
    "load_document",
    "parse",
    "parse_actual",
    "replay_file_path",
    "save_actual",
    "save_document",
    "serialize",
    "serialize_actual",
]
