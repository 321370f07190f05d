"""Categorization consensus engine.

A fixed group of categorizers votes on which subcategory fits a posted job.
A subcategory wins once it holds a strict majority of the frozen group size
(``floor(G / 2) + 1``); not every member has to vote. The tally is recomputed
from all stored votes on every submission, under a row lock on the job.
"""

import logging
import random
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.errors import (
    AlreadyExistsError,
    AuthorizationError,
    InvalidTransitionError,
    NoEligibleWorkersError,
    NotFoundError,
    ValidationError,
    best_effort,
)
from servicehub.models.category import Category
from servicehub.models.job import BroadcastingPhase, CategorizationVote, Job, JobStatus
from servicehub.models.user import ExpertCategorizer, UserType
from servicehub.schemas.bubbles import VotingProgress
from servicehub.schemas.categorization import CategorizationResult, CategorizerAssignment, VoteTally
from servicehub.services.broadcast import (
    assign_bidders_to_job,
    broadcast_to_workers,
    eligible_workers,
    update_all_worker_job_data,
    update_worker_job_data,
)
from servicehub.services.config_lookup import ConfigLookup, DatabaseConfigLookup
from servicehub.services.jobs import get_job, get_user

logger = logging.getLogger(__name__)

Outcome = Literal["majority", "tie", "waiting"]


def majority_threshold(group_size: int) -> int:
    """Strictly more than half of the group, using integer floor-plus-one."""
    return group_size // 2 + 1


@dataclass(frozen=True)
class VoteAnalysis:
    result: Outcome
    current_votes: int
    total_categorizers: int
    majority_threshold: int
    vote_distribution: dict[uuid.UUID, int] = field(default_factory=dict)
    # One id for a clear win, several for a majority-level tie, empty while waiting
    top_subcategory_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def has_decision(self) -> bool:
        return self.result != "waiting"

    @property
    def has_all_votes(self) -> bool:
        return self.current_votes >= self.total_categorizers

    def tally(self) -> VoteTally:
        return VoteTally(
            current_votes=self.current_votes,
            total_categorizers=self.total_categorizers,
            majority_threshold=self.majority_threshold,
            has_all_votes=self.has_all_votes,
            vote_distribution=dict(self.vote_distribution),
        )

    def progress(self) -> VotingProgress:
        return VotingProgress(
            current_votes=self.current_votes,
            total_categorizers=self.total_categorizers,
            majority_threshold=self.majority_threshold,
        )


def analyze_votes(votes: Sequence[uuid.UUID], group_size: int) -> VoteAnalysis:
    """Decide majority / tie / waiting from the votes cast so far, in cast order."""
    threshold = majority_threshold(group_size)
    distribution = Counter(votes)
    if not distribution:
        return VoteAnalysis("waiting", 0, group_size, threshold)

    max_votes = max(distribution.values())
    # Counter keeps first-seen order, so ties list the earliest-voted subcategory first
    top = [sub_id for sub_id, count in distribution.items() if count == max_votes]
    if max_votes < threshold:
        result: Outcome = "waiting"
        top = []
    elif len(top) == 1:
        result = "majority"
    else:
        result = "tie"
    return VoteAnalysis(
        result=result,
        current_votes=len(votes),
        total_categorizers=group_size,
        majority_threshold=threshold,
        vote_distribution=dict(distribution),
        top_subcategory_ids=top,
    )


def select_categorizers(
    eligible_ids: Sequence[uuid.UUID],
    expert_ids: set[uuid.UUID],
    target_size: int,
    rng: random.Random | None = None,
) -> tuple[list[uuid.UUID], int]:
    """Experts first (randomly), then random non-experts. Returns (selected, expert count)."""
    rng = rng or random.SystemRandom()
    experts = [w for w in eligible_ids if w in expert_ids]
    others = [w for w in eligible_ids if w not in expert_ids]
    rng.shuffle(experts)
    rng.shuffle(others)

    selected = experts[:target_size]
    expert_count = len(selected)
    selected += others[: max(target_size - expert_count, 0)]
    return selected, expert_count


def _group_size(job: Job) -> int:
    return job.categorizer_group_size or len(job.categorizer_worker_ids or [])


async def assign_categorizers(
    db: AsyncSession,
    job_id: uuid.UUID,
    config: ConfigLookup | None = None,
    rng: random.Random | None = None,
) -> CategorizerAssignment:
    """Pick and freeze the categorizer group for a posted job, once."""
    config = config or DatabaseConfigLookup(db)
    job = await get_job(db, job_id, for_update=True)
    if job.status != JobStatus.POSTED:
        raise InvalidTransitionError(f"Cannot categorize a {job.status.value} job")
    if job.categorizer_worker_ids or job.broadcasting_phase != BroadcastingPhase.UNASSIGNED:
        raise AlreadyExistsError("Categorizers already assigned to this job")

    result = await db.execute(select(Category.category_id).where(Category.parent_id == job.category_id))
    subcategory_ids = list(result.scalars().all())
    target = await config.categorizer_group_size()

    if not subcategory_ids:
        # Nothing to vote on: the category itself is the subcategory.
        job.subcategory_id = job.category_id
        job.broadcasting_phase = BroadcastingPhase.BIDDING
        job.categorizer_group_size = 0
        bidders = 0
        async with best_effort(db, f"bidder fan-out for job {job.job_id}"):
            bidders = await assign_bidders_to_job(db, job, [job.category_id])
        await db.commit()
        logger.info("Job %s has no subcategories; skipped categorization", job.job_id)
        return CategorizerAssignment(
            job_id=job.job_id,
            skipped_categorization=True,
            categorizer_worker_ids=[],
            group_size=0,
            target_group_size=target,
            expert_count=0,
            bidders_notified=bidders,
        )

    eligible = await eligible_workers(db, [job.category_id])
    if not eligible:
        raise NoEligibleWorkersError("No eligible workers available for this category")

    expert_result = await db.execute(
        select(ExpertCategorizer.worker_id).where(ExpertCategorizer.category_id == job.category_id)
    )
    expert_ids = set(expert_result.scalars().all())

    selected, expert_count = select_categorizers(
        [w.user_id for w in eligible], expert_ids, target, rng
    )
    job.categorizer_worker_ids = [str(w) for w in selected]
    job.categorizer_group_size = len(selected)
    job.broadcasting_phase = BroadcastingPhase.CATEGORIZING
    await db.flush()

    await broadcast_to_workers(db, job, selected, "categorization_request")
    await db.commit()
    logger.info(
        "Assigned %d categorizers (%d experts, target %d) to job %s",
        len(selected), expert_count, target, job.job_id,
    )
    return CategorizerAssignment(
        job_id=job.job_id,
        skipped_categorization=False,
        categorizer_worker_ids=selected,
        group_size=len(selected),
        target_group_size=target,
        expert_count=expert_count,
    )


async def _votes_for(db: AsyncSession, job_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(CategorizationVote.suggested_subcategory_id)
        .where(CategorizationVote.job_id == job_id)
        .order_by(CategorizationVote.created_at.asc())
    )
    return list(result.scalars().all())


async def submit_categorization(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: uuid.UUID,
    subcategory_id: uuid.UUID,
) -> CategorizationResult:
    """Record a categorizer's vote and settle the job's subcategory if decided."""
    job = await get_job(db, job_id, for_update=True)
    if job.status == JobStatus.CANCELLED:
        raise InvalidTransitionError("Job has been cancelled")
    if job.subcategory_id is not None or job.subcategory_ids:
        raise InvalidTransitionError("Job has already been categorized")
    if job.broadcasting_phase != BroadcastingPhase.CATEGORIZING:
        raise InvalidTransitionError("Job is not in the categorization phase")

    worker = await get_user(db, worker_id, "Worker")
    if str(worker_id) not in (job.categorizer_worker_ids or []) or worker.user_type != UserType.WORKER:
        raise AuthorizationError("Worker is not a categorizer for this job")

    existing = await db.execute(
        select(CategorizationVote.vote_id).where(
            CategorizationVote.job_id == job_id,
            CategorizationVote.worker_id == worker_id,
        )
    )
    if existing.first() is not None:
        raise AlreadyExistsError("Worker has already voted on this job")

    subcategory = await db.get(Category, subcategory_id)
    if subcategory is None:
        raise NotFoundError("Subcategory not found")
    if subcategory.parent_id != job.category_id:
        raise ValidationError("Subcategory does not belong to the job's category")

    db.add(CategorizationVote(job_id=job_id, worker_id=worker_id, suggested_subcategory_id=subcategory_id))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExistsError("Worker has already voted on this job") from None

    analysis = analyze_votes(await _votes_for(db, job_id), _group_size(job))

    async with best_effort(db, f"vote progress for worker {worker_id} on job {job_id}"):
        await update_worker_job_data(
            db, job_id, worker_id,
            has_voted=True,
            voted_subcategory_id=subcategory_id,
            voting_progress=analysis.progress(),
        )

    bidders = 0
    if analysis.has_decision:
        winners = analysis.top_subcategory_ids
        job.subcategory_id = winners[0]
        if analysis.result == "tie":
            job.subcategory_ids = [str(s) for s in winners]
        job.broadcasting_phase = BroadcastingPhase.BIDDING
        await db.flush()

        async with best_effort(db, f"categorizer outcome for job {job_id}"):
            await update_all_worker_job_data(
                db, job_id,
                [uuid.UUID(w) for w in job.categorizer_worker_ids],
                has_subcategory=True,
                subcategory_id=job.subcategory_id,
                subcategory_ids=winners if analysis.result == "tie" else None,
                broadcasting_phase=BroadcastingPhase.BIDDING,
            )
        async with best_effort(db, f"bidder fan-out for job {job_id}"):
            bidders = await assign_bidders_to_job(db, job, winners)
        logger.info("Job %s categorized (%s): %s", job_id, analysis.result, winners)

    await db.commit()
    return CategorizationResult(
        job_id=job_id,
        result=analysis.result,
        subcategory_id=job.subcategory_id,
        subcategory_ids=analysis.top_subcategory_ids if analysis.result == "tie" else None,
        tally=analysis.tally(),
        bidders_notified=bidders,
    )


async def get_categorization_status(db: AsyncSession, job_id: uuid.UUID) -> CategorizationResult:
    job = await get_job(db, job_id)
    analysis = analyze_votes(await _votes_for(db, job_id), _group_size(job))
    return CategorizationResult(
        job_id=job_id,
        result=analysis.result,
        subcategory_id=job.subcategory_id,
        subcategory_ids=job.bidding_subcategory_ids() if job.subcategory_ids else None,
        tally=analysis.tally(),
    )


async def list_categorization_jobs(db: AsyncSession, worker_id: uuid.UUID) -> list[Job]:
    """Posted jobs still in categorization where the worker is a categorizer.

    A worker whose balance has run out sees none.
    """
    worker = await get_user(db, worker_id, "Worker")
    if worker.balance <= 0:
        return []
    result = await db.execute(
        select(Job)
        .where(
            Job.status == JobStatus.POSTED,
            Job.broadcasting_phase == BroadcastingPhase.CATEGORIZING,
        )
        .order_by(Job.created_at.desc())
    )
    member = str(worker_id)
    return [job for job in result.scalars().all() if member in (job.categorizer_worker_ids or [])]
