"""
Category-level rollups over the verified panelist ledger
"""
import logging
from collections import Counter
from typing import Dict, Any, Iterable

from models import PanelistStatus
from services.verification_store import VerifiedPanelistStore, ATTRIBUTE_FIELDS, to_camel

logger = logging.getLogger(__name__)


def aggregate_attributes(records: Iterable[Any]) -> Dict[str, Dict[str, int]]:
    """
    Frequency of each value per categorical field.
    Null or empty values are skipped per field, so a record missing one
    attribute still counts toward the others.
    """
    counters = {field: Counter() for field in ATTRIBUTE_FIELDS}
    for record in records:
        for field in ATTRIBUTE_FIELDS:
            value = getattr(record, field, None)
            if value:
                counters[field][value] += 1
    return {to_camel(field): dict(counter) for field, counter in counters.items()}


def get_aggregated_verified_attributes(store: VerifiedPanelistStore) -> Dict[str, Any]:
    """Report shape: one mapping per field plus totalVerified and totalFailed"""
    verified = store.list_by_status(PanelistStatus.VERIFIED.value)
    report = aggregate_attributes(verified)
    report["totalVerified"] = len(verified)
    report["totalFailed"] = store.count_by_status(PanelistStatus.FAILED.value)

    logger.debug(f"Aggregated {report['totalVerified']} verified / {report['totalFailed']} failed panelists")
    return report
