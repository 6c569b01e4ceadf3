# crawler/models.py
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Literal, Optional, Set
from datetime import datetime, timezone

Section = Literal["recommended", "available", "additional"]


def utcnow():
    return datetime.now(timezone.utc)


class Item(BaseModel):
    asin: str = Field(..., description="10-character product identifier")
    section: Section
    name: str
    url: str
    image_url: Optional[str] = None
    seen_at: datetime = Field(default_factory=utcnow)

    @field_validator("asin")
    @classmethod
    def upper_asin(cls, v):
        return v.strip().upper()


class SuggestionRecord(Item):
    suggested_at: Optional[datetime] = None


class SectionCounts(BaseModel):
    recommended: int = 0
    available: int = 0
    additional: int = 0

    def get(self, section):
        return getattr(self, section)


class CategoryNode(BaseModel):
    name: str
    pn: str
    count: Optional[int] = None


class SubcategoryNode(BaseModel):
    name: str
    cn: str
    count: Optional[int] = None


def snapshot_key(pn, cn=None):
    """Composite subtree key: ``pn`` for a whole category, ``pn:cn`` below it."""
    return f"{pn}:{cn}" if cn else str(pn)


class SnapshotUpdate(BaseModel):
    pn: str
    cn: Optional[str] = None
    count: int
    name: str

    @property
    def key(self):
        return snapshot_key(self.pn, self.cn)


class CategoryCrawlResult(BaseModel):
    items: Dict[str, Item] = Field(default_factory=dict)
    pending_updates: List[SnapshotUpdate] = Field(default_factory=list)
    observed_keys: Set[str] = Field(default_factory=set)
    entered_category_ids: Set[str] = Field(default_factory=set)
    collected: int = 0


class CycleResult(BaseModel):
    section_counts: SectionCounts
    all_items: Dict[str, Item]
    appealing: List[str]
    new_item_count: int
    pending_snapshot_updates: List[SnapshotUpdate] = Field(default_factory=list)
    observed_category_keys: Set[str] = Field(default_factory=set)
    entered_category_ids: Set[str] = Field(default_factory=set)

    @property
    def appealing_items(self):
        return [self.all_items[a] for a in self.appealing if a in self.all_items]
