#!/usr/bin/env python3
"""
reap_orphan_assets.py - The Groundskeeper

Removes exercise animations that no exercise template references any more.
The bucket listing is reconciled against the URLs stored on exercise
templates; unreferenced objects are deleted once they are older than the
grace period, which protects uploads whose template row is not written yet.

Schedule: Weekly, Sunday 04:00 (Europe/Paris), see scheduler.py
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set

from config.settings import ORPHAN_GRACE_HOURS
from kine_app.api.storage_api import AssetStorage, StoredAsset
from kine_app.database.queries import get_referenced_asset_urls
from kine_app.database.session import get_db_session, raise_if_abandoned
from kine_app.jobs import log_job_summary, setup_job_logging

logger = logging.getLogger(__name__)


def _referenced_paths(store: AssetStorage, referenced_urls: Set[str]) -> Set[str]:
    """Object paths behind the referenced URLs (older rows store bare paths)."""
    paths = set()
    for reference in referenced_urls:
        if reference.startswith(store.prefix):
            paths.add(reference)
            continue
        path = store.path_from_url(reference)
        if path:
            paths.add(path)
    return paths


def _is_referenced(asset: StoredAsset, referenced_urls: Set[str], referenced_paths: Set[str]) -> bool:
    return asset.url in referenced_urls or asset.path in referenced_paths


def reap_orphan_assets(now: Optional[datetime] = None,
                       store: Optional[AssetStorage] = None,
                       grace_hours: int = ORPHAN_GRACE_HOURS) -> Dict[str, Any]:
    """
    Delete animation objects that no exercise template references.

    Args:
        now: Reference instant (defaults to the current UTC time)
        store: Storage client (defaults to the configured bucket)
        grace_hours: Minimum age before an orphan may be deleted

    Returns:
        Dict with checked, orphans, deleted, skipped_recent, failed and
        details (url, path, createdAt, ageHours) per deleted asset
    """
    now = now or datetime.now(timezone.utc)
    store = store or AssetStorage()
    grace_period = timedelta(hours=grace_hours)

    logger.info(f"🧹 [{now.isoformat()}] Reconciling exercise animations under {store.prefix}...")

    listed = store.list_assets()

    with get_db_session() as session:
        referenced_urls = get_referenced_asset_urls(session)

    referenced_paths = _referenced_paths(store, referenced_urls)
    orphans = [a for a in listed if not _is_referenced(a, referenced_urls, referenced_paths)]

    stats = {
        'checked': len(listed),
        'orphans': len(orphans),
        'deleted': 0,
        'skipped_recent': 0,
        'failed': 0,
        'details': []
    }

    logger.info(f"🔍 {len(listed)} assets checked, {len(referenced_urls)} referenced, {len(orphans)} orphans")

    for orphan in orphans:
        path = store.path_from_url(orphan.url)
        if not path:
            logger.warning(f"⚠️ Unrecognized asset URL, skipping: {orphan.url}")
            continue

        # Blob deletes are not transactional: stop once the attempt is given up
        raise_if_abandoned()

        try:
            created_at = store.get_created_at(path)
            age = now - created_at
            age_hours = round(age.total_seconds() / 3600, 1)

            if age <= grace_period:
                logger.info(f"⏳ Orphan kept, too recent ({age_hours}h < {grace_hours}h): {path}")
                stats['skipped_recent'] += 1
                continue

            store.delete_asset(path)
            stats['deleted'] += 1
            stats['details'].append({
                'url': orphan.url,
                'path': path,
                'createdAt': created_at.isoformat(),
                'ageHours': age_hours
            })
            logger.info(f"🗑️ Orphan asset deleted ({age_hours}h old): {path}")

        except Exception as e:
            logger.error(f"❌ Error reaping orphan asset {path}: {e}")
            stats['failed'] += 1
            continue

    logger.info(
        f"✅ Orphan reap finished: {stats['deleted']} deleted, "
        f"{stats['skipped_recent']} kept (grace period), {stats['failed']} failed"
    )
    return stats


def main():
    """
    Main entry point for a one-off orphan asset reap.
    """
    setup_job_logging('reap_orphan_assets')
    start_time = datetime.now(timezone.utc)

    try:
        stats = reap_orphan_assets()
        log_job_summary('reap_orphan_assets', {
            'Assets checked': stats['checked'],
            'Orphans detected': stats['orphans'],
            'Assets deleted': stats['deleted'],
            'Kept (grace period)': stats['skipped_recent'],
            'Failures': stats['failed'],
        }, start_time)

    except Exception as e:
        logger.error(f"Critical error in main execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
