"""Tag criteria document: local cache, packaged default and remote refresh."""
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from processor.models import FeedKind, TAG_CRITERIA_VERSION_KEY, TagCriterion
from processor.tag_classifier import rank_tag_names
from sync.errors import MalformedResponse

logger = logging.getLogger(__name__)

DEFAULT_TAG_LIST = Path(__file__).resolve().parent / 'data' / 'taglist.json'
NULL_MARKER = '@null'
UPDATE_REQUIRED = 'update required'
HIDDEN_TAGS = ('Student Bulletin',)


def _optional(value: Any) -> Optional[str]:
    if value is None or value == NULL_MARKER:
        return None
    return str(value)


def parse_tag_document(document: Dict[str, Any]) -> List[TagCriterion]:
    """
    Convert a decoded tag list into criteria, keeping document order.

    Raises:
        MalformedResponse: If the "tags" list or a tag name is missing
    """
    tags = document.get('tags') if isinstance(document, dict) else None
    if not isinstance(tags, list):
        raise MalformedResponse("Tag list has no 'tags' array")

    criteria = []
    for entry in tags:
        if not isinstance(entry, dict) or not entry.get('name'):
            raise MalformedResponse(f"Tag list entry without a name: {entry!r}")
        criteria.append(TagCriterion(
            name=str(entry['name']),
            author_match=_optional(entry.get('id_author')),
            category_match=_optional(entry.get('id_category')),
            icon_ref=_optional(entry.get('icon_img'))
        ))
    return criteria


class TagCriteriaStore:
    """Loads tag criteria from a cached copy of the remote tag list."""

    def __init__(
        self,
        cache_path: Union[str, Path],
        metadata,
        default_path: Union[str, Path] = DEFAULT_TAG_LIST
    ):
        """
        Args:
            cache_path: Local file holding the last downloaded tag list
            metadata: Version metadata store (get/put)
            default_path: Packaged tag list used to seed the cache
        """
        self.cache_path = Path(cache_path)
        self.default_path = Path(default_path)
        self.metadata = metadata
        self._criteria: Optional[List[TagCriterion]] = None

    @property
    def criteria(self) -> List[TagCriterion]:
        """Criteria in priority order, loaded lazily."""
        if self._criteria is None:
            self._criteria = self.load()
        return self._criteria

    def load(self) -> List[TagCriterion]:
        """
        Read the cached tag list, seeding it from the packaged copy first.

        Raises:
            MalformedResponse: If the cached file is not a valid tag list
        """
        if not self.cache_path.exists():
            logger.info(f"Seeding tag list cache {self.cache_path} from {self.default_path}")
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.default_path, self.cache_path)

        with open(self.cache_path, encoding='utf-8') as fh:
            try:
                document = json.load(fh)
            except ValueError as e:
                raise MalformedResponse(f"Cached tag list {self.cache_path} is not JSON: {e}") from e
        return parse_tag_document(document)

    def known_tag_names(self) -> List[str]:
        """Distinct visible tag names ranked for display."""
        names = {
            criterion.name for criterion in self.criteria
            if criterion.name not in HIDDEN_TAGS
        }
        return rank_tag_names(names)

    def refresh(self, client, url: str) -> bool:
        """
        Download the tag list and replace the local cache.

        When the document's version differs from the stored one, the post
        feed version is invalidated so the next refresh reclassifies all posts.

        Args:
            client: FeedClient used for the download
            url: Tag list URL

        Returns:
            True if a new tag list version was stored

        Raises:
            TransportFailure: If the download fails
            MalformedResponse: If the document does not parse
        """
        body = client.fetch_text(url)
        try:
            document = json.loads(body)
        except ValueError as e:
            raise MalformedResponse(f"Tag list at {url} is not JSON: {e}") from e

        criteria = parse_tag_document(document)
        self._write_cache(body)
        self._criteria = criteria

        new_version = str(document.get('updated', ''))
        old_version = self.metadata.get(TAG_CRITERIA_VERSION_KEY, '')
        if new_version == old_version:
            logger.info(f"Tag list unchanged at version {new_version}")
            return False

        logger.info(
            f"Tag list version changed from {old_version!r} to {new_version!r}; "
            f"post feed will be fully resynced"
        )
        self.metadata.put(FeedKind.POSTS.version_key, UPDATE_REQUIRED)
        self.metadata.put(TAG_CRITERIA_VERSION_KEY, new_version)
        return True

    def _write_cache(self, body: str) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_path.parent, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(body)
            os.replace(tmp_name, self.cache_path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
