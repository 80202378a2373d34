"""Student name <-> internal identifier translation for free-text messages."""

import logging
import re
import time
from typing import Callable, Dict, List, Optional, Tuple

from profile_flags.models import NameMapping, Translation, TranslationResult
from profile_flags.store import StudentStore

logger = logging.getLogger(__name__)


CACHE_TTL_SECONDS = 5 * 60
FUZZY_MATCH_THRESHOLD = 0.6
SEARCH_THRESHOLD = 0.3

ID_TOKEN = r'\bsid_[0-9_]+'

# Candidate student references, highest precedence first. `span` is the text
# replaced, `name` the text looked up. Quoted strings pair up left to right;
# the word patterns use lookaheads so their candidates may overlap.
NAME_PATTERNS = [
    re.compile(r'(?P<span>["\'](?P<name>[^"\']+)["\'])'),                # quoted
    re.compile(r'(?=\b(?P<span>(?P<name>[A-Z][a-z]+\s+[A-Z][a-z]+))\b)'),   # John Smith
    re.compile(r'(?=\b(?P<span>(?P<name>[A-Z]{2,}\s+[A-Z]{2,}))\b)'),      # JOHN SMITH
    re.compile(r'(?=\b(?P<span>(?P<name>[a-z]+\s+[a-z]+))\b)'),             # john smith
    re.compile(r'(?=\b(?P<span>(?P<name>\d{6,9}))\b)'),                    # student number
]

# Identifier forms, earlier alternatives win at the same position
ID_FORMS = re.compile(
    r'\[Student ID:\s*(?P<bracketed>' + ID_TOKEN + r')\]'
    r'|\(ID:\s*(?P<parenthetical>' + ID_TOKEN + r')\)'
    r'|Student\s+(?P<prefixed>' + ID_TOKEN + r')'
    r'|\[Student Name\]\s+(?P<placeholder>[A-Z][a-z]+(?:\s+[A-Z][a-z\']+)*)'
    r'|"(?P<quoted>' + ID_TOKEN + r')"'
    r'|(?P<phrase>\b(?:belongs to|performer is|student is|is)\s+)(?P<phrased>' + ID_TOKEN + r')'
    r'|(?P<bare>' + ID_TOKEN + r')',
    re.IGNORECASE,
)

LEFTOVER_PLACEHOLDER = re.compile(r'\[Student Name\]\s*', re.IGNORECASE)


def name_similarity(query: str, target: str) -> float:
    """
    Score how well a query matches a name.

    - 1.0 for an exact (case-insensitive) match
    - 0.8 when either contains the other
    - otherwise the share of query words (longer than one character) that
      prefix, or are prefixed by, some target word

    Returns:
        Score in 0-1
    """
    query_normalized = query.lower().strip()
    target_normalized = target.lower().strip()

    if query_normalized == target_normalized:
        return 1.0

    if query_normalized in target_normalized or target_normalized in query_normalized:
        return 0.8

    query_words = [w for w in query_normalized.split() if len(w) > 1]
    target_words = [w for w in target_normalized.split() if len(w) > 1]
    if not query_words:
        return 0.0

    matching_words = sum(
        1 for query_word in query_words
        if any(t.startswith(query_word) or query_word.startswith(t) for t in target_words)
    )
    return matching_words / len(query_words)


class NameTranslator:
    """
    Cache of student names used to rewrite messages.

    Lifecycle: construct with a store, then query. The cache is filled on
    first use and rebuilt wholesale once it is older than `ttl_seconds`.
    Not safe for concurrent refreshes; callers share one instance within a
    single event loop.
    """

    def __init__(self, store: StudentStore, ttl_seconds: float = CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._mappings: Dict[str, NameMapping] = {}
        self._name_to_id: Dict[str, str] = {}
        self._id_to_name: Dict[str, str] = {}
        self.last_refresh: Optional[float] = None
        self.refresh_count = 0

    @property
    def is_stale(self) -> bool:
        if self.last_refresh is None:
            return True
        return self._clock() - self.last_refresh > self.ttl_seconds

    async def refresh_cache(self) -> None:
        """Rebuild all maps from the store. Store errors propagate."""
        logger.info("Refreshing student name translation cache...")
        students = await self.store.all_students()

        mappings: Dict[str, NameMapping] = {}
        name_to_id: Dict[str, str] = {}
        id_to_name: Dict[str, str] = {}

        for student in students:
            full_name = student.full_name
            first_name = student.first_name.strip().lower()
            last_name = student.last_name.strip().lower()

            mappings[student.id] = NameMapping(
                student_id=student.id,
                name=full_name,
                student_number=student.student_number or student.id,
            )
            name_to_id[full_name.lower()] = student.id
            id_to_name[student.id] = full_name

            if first_name and last_name:
                name_to_id[f"{first_name} {last_name[0]}"] = student.id
                name_to_id[f"{last_name}, {first_name}"] = student.id

            if student.student_number:
                name_to_id[student.student_number.lower()] = student.id

        self._mappings = mappings
        self._name_to_id = name_to_id
        self._id_to_name = id_to_name
        self.last_refresh = self._clock()
        self.refresh_count += 1
        logger.info("Cached %d student name mappings", len(mappings))

    async def ensure_fresh(self) -> None:
        if self.is_stale:
            await self.refresh_cache()

    async def find_student_by_name(self, name_query: str) -> Optional[NameMapping]:
        """
        Find a student by name, name variant or student number.

        Exact key lookup first, then the best fuzzy match above 0.6.
        """
        await self.ensure_fresh()
        query = name_query.lower().strip()

        student_id = self._name_to_id.get(query)
        if student_id:
            return self._mappings.get(student_id)

        best: Optional[NameMapping] = None
        best_score = FUZZY_MATCH_THRESHOLD
        for mapping in self._mappings.values():
            score = name_similarity(query, mapping.name)
            if score > best_score:
                best, best_score = mapping, score
        return best

    async def get_name_by_id(self, student_id: str) -> Optional[str]:
        await self.ensure_fresh()
        return self._id_to_name.get(student_id)

    async def get_id_by_name(self, name: str) -> Optional[str]:
        student = await self.find_student_by_name(name)
        return student.student_id if student else None

    async def get_all_mappings(self) -> List[NameMapping]:
        await self.ensure_fresh()
        return list(self._mappings.values())

    async def search_students_by_name(self, query: str, limit: int = 10) -> List[NameMapping]:
        """
        Rank students for search-as-you-type.

        Returns:
            Up to `limit` students scoring above 0.3 or containing the query
        """
        await self.ensure_fresh()
        if not query or len(query) < 2:
            return []

        query_lower = query.lower().strip()
        matches: List[Tuple[float, NameMapping]] = []
        for mapping in self._mappings.values():
            name_lower = mapping.name.lower()
            score = name_similarity(query_lower, name_lower)
            if score > SEARCH_THRESHOLD or query_lower in name_lower:
                matches.append((score, mapping))

        # sorted() is stable, so equal scores keep cache order
        matches = sorted(matches, key=lambda m: m[0], reverse=True)
        return [mapping for _, mapping in matches[:limit]]

    async def translate_names_to_ids(self, message: str) -> TranslationResult:
        """
        Replace student references in a message with `Student <id>` tokens.

        Candidates from every pattern are matched against the original
        message. A resolved candidate is kept unless it overlaps a span
        already kept by a higher-precedence pattern or an earlier match.
        """
        await self.ensure_fresh()
        logger.debug("Translating message: %s", message)

        accepted: List[Tuple[int, int, Translation]] = []
        for pattern in NAME_PATTERNS:
            for match in pattern.finditer(message):
                start, end = match.span('span')
                if any(start < a_end and a_start < end for a_start, a_end, _ in accepted):
                    continue

                potential_name = match.group('name')
                student = await self.find_student_by_name(potential_name)
                if student is None:
                    logger.debug("No student found for: %s", potential_name)
                    continue

                logger.debug("Found student: %s -> %s", potential_name, student.student_id)
                accepted.append((start, end, Translation(
                    original_name=potential_name,
                    student_id=student.student_id,
                    student_name=student.name,
                )))

        pieces = []
        cursor = 0
        for start, end, translation in sorted(accepted, key=lambda a: a[0]):
            pieces.append(message[cursor:start])
            pieces.append(f"Student {translation.student_id}")
            cursor = end
        pieces.append(message[cursor:])

        return TranslationResult(
            translated_message=''.join(pieces),
            translations=[translation for _, _, translation in accepted],
        )

    async def translate_ids_to_names(self, response: str) -> str:
        """
        Replace identifier tokens in a message with display names.

        Unknown identifiers are left as they are. Stray `[Student Name]`
        placeholders are removed.
        """
        await self.ensure_fresh()
        logger.debug("Translating response: %s", response)

        pieces = []
        cursor = 0
        for match in ID_FORMS.finditer(response):
            pieces.append(response[cursor:match.start()])
            pieces.append(self._replacement(match))
            cursor = match.end()
        pieces.append(response[cursor:])

        translated = LEFTOVER_PLACEHOLDER.sub('', ''.join(pieces))
        logger.debug("Translation result: %s", translated)
        return translated

    def _replacement(self, match: re.Match) -> str:
        # Cache freshness is checked once by the caller
        if match.group('placeholder'):
            return match.group('placeholder')

        if match.group('phrased'):
            name = self._id_to_name.get(match.group('phrased'))
            return match.group('phrase') + name if name else match.group(0)

        student_id = next(
            match.group(key)
            for key in ('bracketed', 'parenthetical', 'prefixed', 'quoted', 'bare')
            if match.group(key)
        )
        name = self._id_to_name.get(student_id)
        if name is None:
            logger.debug("No student found for identifier: %s", student_id)
            return match.group(0)
        return name
