"""
Batch/queue worker helper.

Queue integrations (Redis, SQS, a DB table) can pull jobs and hand them to
`process_batch`, which reuses the shared pipeline. Storage of the results
is left to the caller so this stays framework agnostic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .pipeline import PersonRemovalPipeline, build_pipeline
from .types import PersonRemovalOptions, PersonRemovalResult

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    image_url: str
    options: PersonRemovalOptions = field(default_factory=PersonRemovalOptions)


def process_batch(
    items: Iterable[BatchItem],
    pipeline: Optional[PersonRemovalPipeline] = None,
) -> List[PersonRemovalResult]:
    """
    Process a batch of images synchronously.

    Returns one result per item, in input order. A failed item does not
    stop the batch; its result carries the error.
    """
    pipeline = pipeline or build_pipeline()
    results: List[PersonRemovalResult] = []
    for index, item in enumerate(items):
        logger.info("Processing batch item %d url=%s", index, item.image_url[:80])
        results.append(pipeline.run(item.image_url, item.options))
    succeeded = sum(1 for r in results if r.success)
    logger.info("Batch finished: %d/%d succeeded", succeeded, len(results))
    return results
