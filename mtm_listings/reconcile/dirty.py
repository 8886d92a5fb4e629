"""Unsaved-change tracking for the Review draft."""
from typing import Any, Optional

from mtm_listings.models import EDITABLE_FIELDS, ListingDraft
from mtm_listings.reconcile.fields import lines_to_list, list_to_lines

LINE_FIELDS = ("features", "defects")


def _comparable(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_comparable(item) for item in value)
    return value


def diff_fields(before: ListingDraft, after: ListingDraft) -> set[str]:
    """Names of fields whose values differ. Lists compare by order and content."""
    changed = set()
    for name in ListingDraft.model_fields:
        if _comparable(getattr(before, name)) != _comparable(getattr(after, name)):
            changed.add(name)
    return changed


class DraftEditor:
    """Holds the working draft and the baseline it is compared against.

    The baseline is taken when the draft is first populated and again on each
    successful save. ``touched`` records fields the user set since then.
    """

    def __init__(self, draft: Optional[ListingDraft] = None):
        self._draft = (draft or ListingDraft()).model_copy(deep=True)
        self._baseline = self._draft.model_copy(deep=True)
        self.touched: set[str] = set()

    @property
    def draft(self) -> ListingDraft:
        return self._draft.model_copy(deep=True)

    @property
    def baseline(self) -> ListingDraft:
        return self._baseline.model_copy(deep=True)

    @property
    def changed_fields(self) -> set[str]:
        return diff_fields(self._baseline, self._draft)

    @property
    def is_dirty(self) -> bool:
        return bool(self.changed_fields)

    def set_field(self, name: str, value: Any) -> None:
        """Set one editable field. Raises ValueError for unknown or invalid values."""
        if name not in EDITABLE_FIELDS:
            raise ValueError(f"{name} is not an editable field")
        setattr(self._draft, name, value)
        self.touched.add(name)

    def set_lines(self, name: str, text: str) -> None:
        """Set a list field from newline-delimited text."""
        if name not in LINE_FIELDS:
            raise ValueError(f"{name} is not a list field")
        self.set_field(name, lines_to_list(text))

    def lines(self, name: str) -> str:
        if name not in LINE_FIELDS:
            raise ValueError(f"{name} is not a list field")
        return list_to_lines(getattr(self._draft, name))

    def replace(self, draft: ListingDraft) -> None:
        """Swap in a new working draft (e.g. after reconciliation); baseline kept."""
        self._draft = draft.model_copy(deep=True)

    def mark_saved(self) -> None:
        self._baseline = self._draft.model_copy(deep=True)
        self.touched.clear()

    def reset_baseline(self, draft: Optional[ListingDraft] = None) -> None:
        if draft is not None:
            self._draft = draft.model_copy(deep=True)
        self.mark_saved()
