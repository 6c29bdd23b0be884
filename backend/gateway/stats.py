"""Platform-wide dashboard counters for the superadmin console."""
from __future__ import annotations

import logging

from identity_access.domain import (
    BUSINESS_ENTITIES_COLLECTION,
    BUSINESSES_COLLECTION,
    PROFILES_COLLECTION,
    SOCIO_VIP_COLLECTION,
)
from identity_access.stores import DocumentStore

logger = logging.getLogger("cloverpass.gateway.stats")


def count_generated_codes(store: DocumentStore) -> int:
    """Sum the lengths of every entity's `generatedCodes` list; other shapes count 0."""
    total = 0
    for _doc_id, doc in store.stream(BUSINESS_ENTITIES_COLLECTION):
        codes = doc.get("generatedCodes")
        if isinstance(codes, list):
            total += len(codes)
    return total


def collect_dashboard_stats(store: DocumentStore, *, include_code_totals: bool = True) -> dict:
    stats = {
        "totalBusinesses": store.count(BUSINESSES_COLLECTION),
        "totalPlatformUsers": store.count(PROFILES_COLLECTION),
        "totalSocioVipMembers": store.count(SOCIO_VIP_COLLECTION),
        "totalQrCodesGenerated": count_generated_codes(store) if include_code_totals else 0,
    }
    logger.debug("dashboard_stats %s", stats)
    return stats
