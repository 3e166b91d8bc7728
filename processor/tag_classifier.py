"""Rule-based tagging of posts and tag-name ranking."""
import functools
from typing import Iterable, List, Sequence, Tuple

from processor.models import NO_IMAGE, TagCriterion

PINNED_TAG = "Official"


def classify(
    categories: Iterable[str],
    authors: Iterable[str],
    criteria: Sequence[TagCriterion]
) -> Tuple[List[str], str]:
    """
    Match a post's labels against the ordered criteria list.

    A criterion matches when its category is among the post's categories or
    its author is among the post's authors. Every match contributes its name,
    in criteria order. The lead icon comes from the first match only.

    Args:
        categories: Raw category terms of the post
        authors: Raw author names of the post
        criteria: Criteria in priority order

    Returns:
        Tuple of (tag names, lead icon); the icon is NO_IMAGE when nothing
        matched or the first match carries no icon
    """
    category_set = set(categories)
    author_set = set(authors)

    tags: List[str] = []
    lead_icon = NO_IMAGE
    first_matched = False

    for criterion in criteria:
        matched = (
            (criterion.category_match is not None
             and criterion.category_match in category_set) or
            (criterion.author_match is not None
             and criterion.author_match in author_set)
        )
        if not matched:
            continue

        tags.append(criterion.name)
        if not first_matched:
            first_matched = True
            lead_icon = criterion.icon_ref or NO_IMAGE

    return tags, lead_icon


def compare_tag_names(first: str, second: str) -> int:
    """
    Case-insensitive ordering that always puts PINNED_TAG first.

    Returns a negative, zero or positive int like a classic cmp function.
    """
    if first == PINNED_TAG and second == PINNED_TAG:
        return 0
    if first == PINNED_TAG:
        return -1
    if second == PINNED_TAG:
        return 1

    left, right = first.lower(), second.lower()
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def rank_tag_names(names: Iterable[str]) -> List[str]:
    """Sort tag names for display with compare_tag_names."""
    return sorted(names, key=functools.cmp_to_key(compare_tag_names))


def subscribed_tags(selected: Iterable[str], known: Iterable[str]) -> List[str]:
    """Keep the selected names that are still known tags, ranked for display."""
    known_set = set(known)
    return rank_tag_names(name for name in set(selected) if name in known_set)
