"""Block reference resolution and document flattening."""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..interfaces import ReferenceCycleError, UnresolvedReferenceError
from ..logging_config import get_logger
from .models import BlockReferenceStep, Document, FlattenedDocument, Step, StepOrigin
from .parser import block_file_path, load_document

Resolver = Callable[[Path], Document]


class FileResolver:
    """Loads block files from disk, caching each parsed file by resolved path."""

    def __init__(self):
        self.logger = get_logger(__name__)
        self._cache: Dict[Path, Document] = {}

    def __call__(self, block_path: Path) -> Document:
        key = _canonical(block_path)
        if key not in self._cache:
            if not key.is_file():
                raise FileNotFoundError(str(block_path))
            self._cache[key] = load_document(key)
            self.logger.debug(f"Loaded block {key}")
        return self._cache[key]

    def clear(self) -> None:
        """Drop cached documents, e.g. after block files were edited."""
        self._cache.clear()


def _canonical(path: Path) -> Path:
    return Path(path).resolve()


def flatten(document: Document, resolver: Optional[Resolver] = None) -> FlattenedDocument:
    """
    Replace every block reference with the steps of the referenced document.

    References resolve relative to the directory of the document that contains
    them, so blocks may nest and still be moved around as a tree.

    Args:
        document: Document to flatten; ``document.path`` anchors references
        resolver: Callable returning the document stored at a block path.
            Defaults to a FileResolver.

    Returns:
        Flattened document with per-step origins

    Raises:
        UnresolvedReferenceError: If a referenced block cannot be found
        ReferenceCycleError: If a document references itself, directly or not
        ParseError: If a referenced block file is malformed
    """
    if resolver is None:
        resolver = FileResolver()

    root_key = _canonical(document.path) if document.path else None
    chain: List[Path] = [root_key] if root_key else []
    steps: List[Step] = []
    origins: List[StepOrigin] = []

    # Work stack of (document, next step index); avoids Python recursion limits
    # on deep block trees and keeps the reference chain explicit.
    stack: List[Tuple[Document, int, Optional[Path]]] = [(document, 0, root_key)]
    parent_origins: Dict[int, List[StepOrigin]] = {}
    if isinstance(document, FlattenedDocument) and document.origins:
        parent_origins[id(document)] = document.origins

    while stack:
        current, index, current_key = stack.pop()
        if index >= len(current.steps):
            if current_key is not None and chain and chain[-1] == current_key and current is not document:
                chain.pop()
            continue

        step = current.steps[index]
        stack.append((current, index + 1, current_key))

        if not isinstance(step, BlockReferenceStep):
            steps.append(step)
            known = parent_origins.get(id(current))
            origins.append(known[index] if known else StepOrigin(path=current.path, index=index))
            continue

        block_path = block_file_path(step.reference_path, current.path)
        block_key = _canonical(block_path)
        if block_key in chain:
            raise ReferenceCycleError(chain + [block_key])

        try:
            block = resolver(block_path)
        except FileNotFoundError:
            raise UnresolvedReferenceError(step.reference_path, block_path, current.path, chain) from None

        if block.path is None:
            block = block.model_copy(update={"path": block_path})

        chain.append(block_key)
        stack.append((block, 0, block_key))

    flattened = FlattenedDocument(
        description=document.description,
        steps=steps,
        origins=origins,
        path=document.path
    )
    get_logger(__name__).debug(
        f"Flattened {document.path or '<string>'}: {len(document.steps)} -> {len(steps)} steps"
    )
    return flattened
