"""Path translation between the web host and the GPU worker host.

Both hosts mount the same NAS volume under different prefixes (for example
``/Volumes/videos`` locally and ``/mnt/nas/videos`` on the worker). Every path
that crosses the network boundary is translated exactly once per hop.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from gpu_transcoder.core.config import settings as default_settings, Settings
from gpu_transcoder.modules.transcoding.exceptions import PathTranslationError


def _normalize_prefix(prefix: str) -> str:
    if not prefix or not prefix.startswith("/"):
        raise ValueError(f"Path prefix must be absolute: {prefix!r}")
    stripped = prefix.rstrip("/")
    if not stripped:
        raise ValueError("The filesystem root cannot be used as a path prefix")
    return stripped


def is_under(path: str, prefix: str) -> bool:
    """Check whether ``path`` equals ``prefix`` or lies below it.

    Matches whole path components only, so ``/data/uploads-old`` is not under
    ``/data/uploads``.
    """
    return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class PathMapping:
    """One local prefix and the remote prefix of the same storage."""
    local_prefix: str
    remote_prefix: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "local_prefix", _normalize_prefix(self.local_prefix))
        object.__setattr__(self, "remote_prefix", _normalize_prefix(self.remote_prefix))


def _overlaps(a: str, b: str) -> bool:
    return is_under(a, b) or is_under(b, a)


class PathTranslator:
    """Pure bidirectional prefix substitution.

    ``to_local(to_remote(p)) == p`` for every ``p`` under a local prefix, and
    ``to_remote(to_local(p)) == p`` for every ``p`` under a remote prefix.
    Translating a path that is not in the source namespace raises
    PathTranslationError instead of passing it through, so a path translated
    twice in the same direction is reported rather than silently accepted.
    """

    def __init__(self, mappings: Iterable[PathMapping]):
        self._mappings = tuple(mappings)
        if not self._mappings:
            raise ValueError("At least one path mapping is required")

        for i, first in enumerate(self._mappings):
            for second in self._mappings[i + 1:]:
                if _overlaps(first.local_prefix, second.local_prefix):
                    raise ValueError(
                        f"Overlapping local prefixes: {first.local_prefix!r}, {second.local_prefix!r}"
                    )
                if _overlaps(first.remote_prefix, second.remote_prefix):
                    raise ValueError(
                        f"Overlapping remote prefixes: {first.remote_prefix!r}, {second.remote_prefix!r}"
                    )

    @classmethod
    def single(cls, local_prefix: str, remote_prefix: str) -> "PathTranslator":
        return cls([PathMapping(local_prefix, remote_prefix)])

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "PathTranslator":
        """Build the NAS mapping from configuration."""
        config = config or default_settings
        return cls.single(config.NAS_VIDEOS_PATH, config.GPU_NAS_VIDEOS_PATH)

    @property
    def mappings(self) -> tuple[PathMapping, ...]:
        return self._mappings

    def is_local(self, path: str) -> bool:
        return any(is_under(path, m.local_prefix) for m in self._mappings)

    def is_remote(self, path: str) -> bool:
        return any(is_under(path, m.remote_prefix) for m in self._mappings)

    def to_remote(self, path: str) -> str:
        """Translate a local path into the worker's namespace.

        Raises:
            PathTranslationError: If the path is not under any local prefix
        """
        for mapping in self._mappings:
            if is_under(path, mapping.local_prefix):
                return _swap_prefix(path, mapping.local_prefix, mapping.remote_prefix)
        raise PathTranslationError(path, "local")

    def to_local(self, path: str) -> str:
        """Translate a worker path back into the local namespace.

        Raises:
            PathTranslationError: If the path is not under any remote prefix
        """
        for mapping in self._mappings:
            if is_under(path, mapping.remote_prefix):
                return _swap_prefix(path, mapping.remote_prefix, mapping.local_prefix)
        raise PathTranslationError(path, "remote")


def _swap_prefix(path: str, old: str, new: str) -> str:
    return new + path[len(old):]
