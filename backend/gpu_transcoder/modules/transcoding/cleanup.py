"""Deletion of temporary uploads once a transcode is done.

Only files strictly inside the uploads directory may be deleted. Anything else
is rejected before a request is made. Deleting a file that is already gone
counts as success, so cleanup can be retried freely.
"""

import logging
import posixpath
from typing import Optional

from gpu_transcoder.core.config import settings
from gpu_transcoder.core.logging import log_info, log_warning
from gpu_transcoder.core.metrics import SIDE_EFFECTS_TOTAL
from gpu_transcoder.modules.transcoding.client import TranscodeClient
from gpu_transcoder.modules.transcoding.exceptions import PathTranslationError, TransportError
from gpu_transcoder.modules.transcoding.paths import PathTranslator
from gpu_transcoder.modules.transcoding.schemas import CleanupResult

logger = logging.getLogger(__name__)


def _reports_missing(message: Optional[str]) -> bool:
    return bool(message) and "not found" in message.lower()


class CleanupCoordinator:
    """Deletes temp uploads on the worker, confined to the uploads prefix.

    Args:
        client: Worker client
        translator: Local/worker path translator
        uploads_prefix: Local uploads directory
    """

    def __init__(
        self,
        client: TranscodeClient,
        translator: PathTranslator,
        uploads_prefix: Optional[str] = None,
    ):
        self.client = client
        self.translator = translator
        self.uploads_prefix = posixpath.normpath(uploads_prefix or settings.uploads_path)

    def is_deletable(self, path: str) -> bool:
        """Whether ``path`` is strictly inside the uploads prefix."""
        if not path or not path.startswith("/"):
            return False
        if ".." in path.split("/"):
            return False
        normalized = posixpath.normpath(path)
        return normalized.startswith(self.uploads_prefix + "/")

    async def delete(self, path: str) -> CleanupResult:
        """Delete a temp upload.

        Args:
            path: Local path of the upload

        Returns:
            CleanupResult; never raises
        """
        if not self.is_deletable(path):
            SIDE_EFFECTS_TOTAL.labels(kind="cleanup", result="rejected").inc()
            log_warning(
                logger,
                "Refusing to delete path outside the uploads directory",
                path=path,
                uploads_prefix=self.uploads_prefix,
            )
            return CleanupResult(
                success=False,
                path=path,
                rejected=True,
                error=f"Path is not inside {self.uploads_prefix}",
            )

        try:
            remote_path = self.translator.to_remote(posixpath.normpath(path))
            response = await self.client.cleanup_upload(remote_path)
        except PathTranslationError as e:
            return self._failed(path, str(e))
        except TransportError as e:
            if e.is_not_found:
                return self._absent(path)
            return self._failed(path, str(e))

        if _reports_missing(response.message) or _reports_missing(response.error):
            return self._absent(path)
        if not response.success:
            return self._failed(path, response.error or response.message or "Cleanup failed")

        SIDE_EFFECTS_TOTAL.labels(kind="cleanup", result="success").inc()
        log_info(logger, "Temp upload deleted", path=path)
        return CleanupResult(success=True, path=path)

    def _absent(self, path: str) -> CleanupResult:
        SIDE_EFFECTS_TOTAL.labels(kind="cleanup", result="absent").inc()
        log_info(logger, "Temp upload already removed", path=path)
        return CleanupResult(success=True, path=path, already_absent=True)

    def _failed(self, path: str, error: str) -> CleanupResult:
        SIDE_EFFECTS_TOTAL.labels(kind="cleanup", result="failure").inc()
        log_warning(logger, f"Temp upload cleanup failed: {error}", path=path)
        return CleanupResult(success=False, path=path, error=error)
