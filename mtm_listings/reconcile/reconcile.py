"""Overlay an AIAnalysis onto an editable draft without clobbering user values."""
import logging

from mtm_listings.models import AIAnalysis, ListingDraft
from mtm_listings.reconcile.fields import normalize_road_number, paperwork_label

logger = logging.getLogger(__name__)

LIST_FIELDS = ("features", "defects")


def analysis_updates(analysis: AIAnalysis) -> dict:
    """Draft field values carried by an analysis; absent fields are left out."""
    updates = {}
    for name in AIAnalysis.model_fields:
        value = getattr(analysis, name)
        if name in LIST_FIELDS:
            # An empty list is how a normalized analysis says "absent"
            if value:
                updates[name] = list(value)
            continue
        if value is None:
            continue
        if name == "road_number":
            value = normalize_road_number(value)
        elif name == "paperwork":
            value = paperwork_label(value)
        updates[name] = value
    return updates


def reconcile(draft: ListingDraft, analysis: AIAnalysis) -> ListingDraft:
    """Return a new draft with every non-null analysis field applied.

    Null analysis fields leave the draft value as it was, so manual edits
    survive a re-run that comes back uncertain. Applying the same analysis
    twice gives the same draft as applying it once.
    """
    updates = analysis_updates(analysis)
    data = draft.model_dump()
    data.update(updates)
    logger.debug(f"Reconciled {len(updates)} fields from analysis")
    return ListingDraft.model_validate(data)
