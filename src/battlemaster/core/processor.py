"""Core label decision pipeline.

This module is integration-agnostic. It only relies on the labeler port,
enabling tests and alternative labeling services without changes here.

The pipeline enforces a strict order:
1) Dedup check
2) Structural validation
3) Self-trigger guard
4) Subject ownership
5) Trigger key extraction
6) Catalog match and category validation
7) Label application
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict

from battlemaster.core.aturi import is_valid_did, is_valid_rkey, parse_at_uri
from battlemaster.core.catalog import LabelCatalog
from battlemaster.core.dedup import DedupCache, identifier_for
from battlemaster.core.errors import CategoryError, LabelApplicationError
from battlemaster.core.models import Outcome, TriggerEvent
from battlemaster.core.ports import LabelerPort

LOGGER = logging.getLogger(__name__)

SELF_RKEY = "self"


class LabelProcessor:
    """Decides whether a like earns a label and applies it."""

    def __init__(
        self,
        catalog: LabelCatalog,
        labeler: LabelerPort,
        dedup: DedupCache,
        authority_did: str,
    ) -> None:
        self._catalog = catalog
        self._labeler = labeler
        self._dedup = dedup
        self._authority_did = authority_did
        self._outcomes: Counter[Outcome] = Counter()

    @property
    def outcomes(self) -> Dict[Outcome, int]:
        return dict(self._outcomes)

    async def handle(self, event: TriggerEvent) -> Outcome:
        """Process one event and return what happened to it."""

        outcome = await self._handle(event)
        self._outcomes[outcome] += 1
        return outcome

    async def _handle(self, event: TriggerEvent) -> Outcome:
        event_id = identifier_for(event)
        if self._dedup.seen(event_id):
            LOGGER.debug("Skipping duplicate create event: %s", event_id)
            return Outcome.DUPLICATE
        if not is_valid_did(event.actor) or not event.subject_uri:
            LOGGER.error("Received invalid event structure: %r", event)
            return Outcome.INVALID
        subject = parse_at_uri(event.subject_uri)
        if subject is None:
            LOGGER.error("Received event with malformed subject uri: %r", event.subject_uri)
            return Outcome.INVALID

        # The authority liking its own marker posts must not label itself.
        if event.actor == self._authority_did or subject.rkey == SELF_RKEY:
            LOGGER.info("Self-labeling detected for %s. No action taken.", event.actor)
            return Outcome.SELF_TRIGGER

        if subject.authority != self._authority_did:
            LOGGER.debug("Ignoring like on unrelated subject %s", event.subject_uri)
            return Outcome.NOT_OWNED

        # Only likes on our own posts are remembered, and before any await.
        self._dedup.record(event_id)

        rkey = subject.rkey
        if not is_valid_rkey(rkey):
            LOGGER.warning("Could not extract rkey from subject %s", event.subject_uri)
            return Outcome.NO_TRIGGER

        label = self._catalog.match(rkey)
        if label is None:
            LOGGER.info("No matching label found for rkey: %s", rkey)
            return Outcome.UNMATCHED

        try:
            category = self._catalog.validate_category(label.category)
        except CategoryError as exc:
            LOGGER.error("Dropping event for %s: %s", event.actor, exc)
            return Outcome.INVALID

        try:
            await self._labeler.apply_label(event.actor, label.identifier)
        except LabelApplicationError as exc:
            LOGGER.error("Failed to apply %s label to %s: %s", label.identifier, event.actor, exc)
            return Outcome.FAILED

        LOGGER.info("Applied %s label (%s) to %s", label.identifier, category, event.actor)
        return Outcome.APPLIED
