import asyncio
import time
from dataclasses import dataclass
from enum import StrEnum

from pydantic import Field

from carefinder.constants import INDEX_GROUP_PAUSE, INDEX_GROUP_SIZE, INDEX_MIN_TEXT_CHARS
from carefinder.embedder import Embedder
from carefinder.logging import get_logger
from carefinder.recommend.models import CamelModel
from carefinder.vector.store import VectorStore

_logger = get_logger(__name__)


class Program(CamelModel):
    program_name: str
    target_group: str | None = None
    description: str | None = None
    is_active: bool = True


class Center(CamelModel):
    id: int | str
    center_name: str
    center_type: str | None = None
    business_content: str | None = None
    other_info: str | None = None
    road_address: str | None = None
    specialties: list[str] = Field(default_factory=list)
    programs: list[Program] = Field(default_factory=list)
    is_active: bool = True

    @property
    def active_programs(self) -> list[Program]:
        return [p for p in self.programs if p.is_active]


class IndexStatus(StrEnum):
    PENDING = "pending"
    INDEXING = "indexing"
    DONE = "done"
    ERROR = "error"


@dataclass
class IndexReport:
    total: int = 0
    processed: int = 0
    failed: int = 0
    duration: int = 0  # seconds
    status: IndexStatus = IndexStatus.PENDING


def _program_text(program: Program) -> str:
    parts = [program.program_name]
    if program.target_group:
        parts.append(f"(대상: {program.target_group})")
    if program.description:
        parts.append(f": {program.description}")
    return " ".join(parts)


def build_center_text(center: Center) -> str:
    """Text that represents a center in embedding space, most telling parts first."""
    parts = [center.center_name]
    if center.center_type:
        parts.append(f"유형: {center.center_type}")
    if center.business_content:
        parts.append(center.business_content)
    if center.other_info:
        parts.append(center.other_info)
    programs = center.active_programs
    if programs:
        parts.append("제공 프로그램: " + "; ".join(_program_text(p) for p in programs))
    if center.road_address:
        parts.append(f"위치: {center.road_address}")
    return "\n\n".join(parts).strip()


def center_payload(center: Center, text: str) -> dict:
    return {
        "centerId": center.id,
        "name": center.center_name,
        "centerType": center.center_type or "",
        "roadAddress": center.road_address or "",
        "specialties": list(center.specialties),
        "description": center.business_content or "",
        "programCount": len(center.active_programs),
        "textLength": len(text),
    }


class CenterIndexer:
    """Embeds center descriptions and stores them in the vector index.

    Centers are processed one at a time in groups, with a pause between
    groups to stay under the provider's rate limit. A failing center is
    counted and skipped.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        group_size: int = INDEX_GROUP_SIZE,
        group_pause: float = INDEX_GROUP_PAUSE,
    ):
        self.embedder = embedder
        self.store = store
        self.group_size = group_size
        self.group_pause = group_pause

    async def index_center(self, center: Center) -> bool:
        text = build_center_text(center)
        if len(text) < INDEX_MIN_TEXT_CHARS:
            _logger.warning("Skipping center %s (%s): text too short (%d chars)", center.id, center.center_name, len(text))
            return False
        # Indexing always re-embeds, bypassing the embedding cache
        vector = await self.embedder.embed_one(text, use_cache=False)
        await self.store.upsert(center.id, vector, center_payload(center, text))
        _logger.debug("Indexed center %s (%s, %d chars)", center.id, center.center_name, len(text))
        return True

    async def run(self, centers: list[Center]) -> IndexReport:
        start = time.monotonic()
        centers = [c for c in centers if c.is_active]
        report = IndexReport(total=len(centers), status=IndexStatus.INDEXING)
        if not centers:
            _logger.warning("No centers to index")
            report.status = IndexStatus.DONE
            return report

        groups = (len(centers) + self.group_size - 1) // self.group_size
        for i, offset in enumerate(range(0, len(centers), self.group_size), start=1):
            group = centers[offset : offset + self.group_size]
            _logger.debug("Indexing group %d/%d (%d centers)", i, groups, len(group))
            for center in group:
                try:
                    ok = await self.index_center(center)
                except Exception as e:
                    _logger.error("Indexing center %s (%s) failed: %s", center.id, center.center_name, e)
                    ok = False
                if ok:
                    report.processed += 1
                else:
                    report.failed += 1
            if i < groups and self.group_pause > 0:
                await asyncio.sleep(self.group_pause)

        report.duration = round(time.monotonic() - start)
        report.status = IndexStatus.DONE
        _logger.info(
            "Center indexing done: %d total, %d indexed, %d failed, %ds",
            report.total,
            report.processed,
            report.failed,
            report.duration,
        )
        return report
