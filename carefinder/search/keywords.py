"""Mental-health vocabulary used to explain and widen semantic matches."""

from carefinder.constants import EXPANSION_SYNONYMS_PER_TERM, MAX_MATCHED_KEYWORDS

DOMAIN_TERMS: tuple[str, ...] = (
    "우울증",
    "불안",
    "스트레스",
    "상담",
    "치료",
    "정신건강",
    "심리",
    "청년",
    "직장인",
    "학생",
    "부모",
    "자녀",
    "가족",
    "수면",
    "외상",
)

SYNONYMS: dict[str, tuple[str, ...]] = {
    "우울증": ("우울", "우울감", "기분 저하"),
    "불안": ("불안감", "걱정", "두려움"),
    "스트레스": ("압박", "긴장", "부담"),
    "상담": ("심리상담", "치료", "상담치료"),
    "청년": ("젊은이", "청소년", "대학생"),
    "직장인": ("회사원", "근로자", "샐러리맨"),
}


def _tokens(text: str) -> list[str]:
    return text.lower().split()


def extract_matched_keywords(
    query: str,
    payload: dict,
    domain_terms: tuple[str, ...] = DOMAIN_TERMS,
    limit: int = MAX_MATCHED_KEYWORDS,
) -> list[str]:
    """Keywords explaining why a center matched *query*.

    Specialties named in the query come first, then domain terms present in
    both the query and the center description. Deduplicated, at most *limit*.
    """
    query_lower = query.lower()
    query_tokens = set(_tokens(query))
    keywords: list[str] = []

    specialties = payload.get("specialties")
    if isinstance(specialties, list):
        for specialty in specialties:
            if not isinstance(specialty, str) or not specialty.strip():
                continue
            needle = specialty.lower()
            if needle in query_tokens or needle in query_lower:
                keywords.append(specialty)

    description = payload.get("description")
    if isinstance(description, str) and description:
        description_lower = description.lower()
        for term in domain_terms:
            if term in query_lower and term in description_lower:
                keywords.append(term)

    return list(dict.fromkeys(keywords))[:limit]


def expand_query(
    query: str,
    synonyms: dict[str, tuple[str, ...]] = SYNONYMS,
    per_term: int = EXPANSION_SYNONYMS_PER_TERM,
) -> str:
    """Append up to *per_term* synonyms for every domain term found in *query*."""
    additions = [" ".join(words[:per_term]) for term, words in synonyms.items() if term in query]
    if not additions:
        return query
    return f"{query} {' '.join(additions)}"
