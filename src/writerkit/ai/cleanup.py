"""Best-effort sweep of remote files and prompt caches.

Runs when a project is opened or created and when the application exits.
A failed deletion is logged and recorded; the sweep continues with the
remaining resources and never raises for remote failures.
"""

import logging

from .adapter.base import BaseTransportAdapter
from .models.common import CleanupReport

logger = logging.getLogger(__name__)


async def clear_all_remote_resources(adapter: BaseTransportAdapter) -> CleanupReport:
    """
    Delete every cache, then every uploaded file, reachable with the adapter's credential.

    Caches go first because they reference uploaded file content.
    """
    report = CleanupReport()
    capabilities = adapter.capabilities

    if capabilities.supports_cache_listing and capabilities.supports_cache_deletion:
        try:
            caches = await adapter.with_retry(adapter.list_caches, "List caches")
        except Exception as e:
            logger.error(f"Could not list caches for cleanup: {e}")
            report.failures.append(f"list caches: {e}")
            caches = []
        for cache in caches:
            try:
                await adapter.delete_cache(cache.name)
                report.caches_deleted.append(cache.name)
                logger.info(f"Deleted cache {cache.name}")
            except Exception as e:
                logger.error(f"Failed to delete cache {cache.name}: {e}")
                report.failures.append(f"cache {cache.name}: {e}")
    else:
        report.skipped.append("caches")

    if capabilities.supports_file_listing and capabilities.supports_file_deletion:
        try:
            files = await adapter.with_retry(adapter.list_files, "List files")
        except Exception as e:
            logger.error(f"Could not list files for cleanup: {e}")
            report.failures.append(f"list files: {e}")
            files = []
        for file in files:
            try:
                await adapter.delete_file(file.name)
                report.files_deleted.append(file.name)
                logger.info(f"Deleted file {file.name}")
            except Exception as e:
                logger.error(f"Failed to delete file {file.name}: {e}")
                report.failures.append(f"file {file.name}: {e}")
    else:
        report.skipped.append("files")

    logger.info(
        f"Cleanup finished: {len(report.caches_deleted)} cache(s), "
        f"{len(report.files_deleted)} file(s) deleted, {len(report.failures)} failure(s)"
    )
    return report
