"""Schemas for categorization voting."""

import uuid
from typing import Literal

from pydantic import BaseModel


class VoteCreate(BaseModel):
    subcategory_id: uuid.UUID


class VoteTally(BaseModel):
    current_votes: int
    total_categorizers: int
    majority_threshold: int
    has_all_votes: bool
    vote_distribution: dict[uuid.UUID, int]


class CategorizationResult(BaseModel):
    job_id: uuid.UUID
    result: Literal["majority", "tie", "waiting"]
    subcategory_id: uuid.UUID | None = None
    subcategory_ids: list[uuid.UUID] | None = None
    tally: VoteTally
    bidders_notified: int = 0


class CategorizerAssignment(BaseModel):
    job_id: uuid.UUID
    skipped_categorization: bool
    categorizer_worker_ids: list[uuid.UUID]
    group_size: int
    target_group_size: int
    expert_count: int
    bidders_notified: int = 0
