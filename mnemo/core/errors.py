"""Error types shared by the indexing and retrieval layers.

Architectural role:
    Gives readers, collaborators and adapters a small common vocabulary for the
    failure classes the engine distinguishes:

    - `SourceParseError`: one malformed unit (file or record). Callers skip the
      unit and continue the pass.
    - `CollaboratorUnavailable`: the embedding model or vector store failed. The
      running pass aborts without committing index state.
    - `ConfigurationError`: an expected source directory is missing. Indexers
      treat this as "nothing to index".
    - `IndexBusyError`: a build pass was requested while another one is running.

    An empty index at query time is not an error; retrieval returns an empty
    result set with a rebuild hint instead.
"""


class MnemoError(Exception):
    """Base class for all errors raised by the memory engine."""


class SourceParseError(MnemoError):
    """A single source unit could not be read or decoded."""

    def __init__(self, source, reason):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class CollaboratorUnavailable(MnemoError):
    """The embedding gateway or the vector store failed."""


class ConfigurationError(MnemoError):
    """An expected source directory does not exist."""


class IndexBusyError(MnemoError):
    """Another index build pass is already running on this engine."""
