"""
Committee Engine.

Runs one column-mapping decision task end to end: select a committee,
dispatch the evidence, validate and weigh the votes, classify consensus,
archive every artifact, and emit a notification.
"""

import asyncio
import time

import structlog

from .audit import EVIDENCE_ARTIFACT, RESULT_ARTIFACT, VOTES_ARTIFACT, AuditSink, FileAuditSink
from .config.settings import Settings, get_settings
from .consensus.classifier import ConsensusClassifier
from .consensus.voting import WeightedVotingAggregator
from .consensus.weights import WeightStore
from .dispatcher import ConcurrencyLimiter, Dispatcher
from .errors import InsufficientProviders
from .human_review.outbox import NotificationOutbox
from .human_review.queue import ReviewQueue
from .models import AuditReferences, CommitteeResult, EvidenceContract
from .providers.pool import ProviderPool
from .providers.selection import ProviderSelector

logger = structlog.get_logger()


class CommitteeEngine:
    """
    Multi-provider consensus for column-to-field mapping.

    Flow:
    1. Load the current weight snapshot, reloading a recalibrated file
       (the snapshot is then fixed for the whole run)
    2. Select N providers from the pool
    3. Archive the evidence and dispatch it to the committee
    4. Archive every raw vote, then check quorum
    5. Aggregate weighted scores and classify each field
    6. Archive the result and notify
    """

    def __init__(
        self,
        pool: ProviderPool,
        weight_store: WeightStore,
        audit_sink: AuditSink,
        settings: Settings | None = None,
        selector: ProviderSelector | None = None,
        dispatcher: Dispatcher | None = None,
        aggregator: WeightedVotingAggregator | None = None,
        classifier: ConsensusClassifier | None = None,
        outbox: NotificationOutbox | None = None,
        review_queue: ReviewQueue | None = None,
    ):
        """
        Initialize the engine.

        Args:
            pool: Configured decision providers
            weight_store: Source of weight snapshots
            audit_sink: Archive for evidence, votes and results
            settings: Engine settings (uses cached settings if None)
            selector: Committee selector (built from settings if None)
            dispatcher: Provider dispatcher (built from settings if None)
            aggregator: Weighted voting aggregator
            classifier: Consensus classifier (built from settings if None)
            outbox: Notification outbox, if notifications are consumed
            review_queue: Human review queue, if reviews are routed here
        """
        self.settings = settings or get_settings()
        self.pool = pool
        self.weight_store = weight_store
        self.audit_sink = audit_sink
        self.selector = selector or ProviderSelector(
            committee_size=self.settings.committee_size,
            enforce_diversity=self.settings.enforce_provider_diversity,
        )
        self.dispatcher = dispatcher or Dispatcher(
            limiter=ConcurrencyLimiter(self.settings.max_concurrent_provider_calls),
            timeout_seconds=self.settings.provider_timeout_seconds,
            min_successful=self.settings.min_successful_providers,
        )
        self.aggregator = aggregator or WeightedVotingAggregator()
        self.classifier = classifier or ConsensusClassifier.from_settings(self.settings)
        self.outbox = outbox
        self.review_queue = review_queue

        logger.info(
            "committee_engine_initialized",
            providers=pool.enabled_ids(),
            committee_size=self.settings.committee_size,
            quorum=self.dispatcher.min_successful,
            weights_version=weight_store.snapshot().version,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CommitteeEngine":
        """Wire the engine from configuration files and settings."""
        settings = settings or get_settings()
        pool = ProviderPool.from_yaml(settings.providers_yaml_path)
        return cls(
            pool=pool,
            weight_store=WeightStore.load(settings.weights_file, pool.enabled_ids()),
            audit_sink=FileAuditSink(settings.audit_dir),
            settings=settings,
            outbox=NotificationOutbox(),
            review_queue=ReviewQueue(critical_fields=settings.critical_fields),
        )

    async def refresh_weights(self) -> bool:
        """
        Pick up a recalibrated weights file, if one was written.

        Returns:
            True if a new snapshot was published
        """
        return await asyncio.to_thread(self.weight_store.reload)

    async def run(self, contract: EvidenceContract) -> CommitteeResult:
        """
        Decide the column mapping for one task.

        Args:
            contract: Evidence contract from the parser

        Returns:
            CommitteeResult with every target field mapped or unresolved

        Raises:
            PoolExhausted: If fewer enabled providers than the committee size
            InsufficientProviders: If too few providers returned valid votes
            AuditSinkError: If an artifact could not be archived
        """
        start_time = time.perf_counter()
        task_id = contract.task_id
        await self.refresh_weights()

        with structlog.contextvars.bound_contextvars(task_id=task_id):
            base_weights = self.weight_store.snapshot()
            selection = self.selector.select(self.pool)
            weights = base_weights.for_committee(selection.provider_ids)

            logger.info(
                "committee_started",
                providers=selection.provider_ids,
                diversity_met=selection.diversity_met,
                weights_version=weights.version,
                fields=list(contract.target_fields),
            )

            evidence_ref = await self.audit_sink.write(task_id, EVIDENCE_ARTIFACT, contract)
            votes = await self.dispatcher.dispatch(contract, selection.providers)
            votes_ref = await self.audit_sink.write(task_id, VOTES_ARTIFACT, votes)
            audit = AuditReferences(evidence=evidence_ref, votes=votes_ref)

            try:
                self.dispatcher.ensure_quorum(task_id, votes, audit=audit)
            except InsufficientProviders as e:
                if self.review_queue is not None:
                    self.review_queue.add_fallback(contract, str(e))
                if self.outbox is not None:
                    self.outbox.publish_fallback(contract)
                raise

            valid_votes = [v for v in votes if v.is_valid]
            tallies = self.aggregator.aggregate(contract, valid_votes, weights)
            decisions = self.classifier.classify_all(tallies)

            result = CommitteeResult(
                task_id=task_id,
                final_mapping={name: d.resolved for name, d in decisions.items()},
                decisions=decisions,
                selected_providers=tuple(selection.provider_ids),
                participating_providers=tuple(v.provider_id for v in valid_votes),
                requires_human_review=any(d.requires_human for d in decisions.values()),
                weights_version=weights.version,
                audit=audit,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
            )

            result_ref = await self.audit_sink.write(
                task_id,
                RESULT_ARTIFACT,
                {
                    "result": result,
                    "voting": self.aggregator.audit_trail(tallies, weights),
                    "review_config": self.classifier.get_config(),
                },
            )

            if self.review_queue is not None and result.requires_human_review:
                self.review_queue.add_result(result)
            if self.outbox is not None:
                self.outbox.publish_result(result, result_reference=result_ref)

            logger.info(
                "committee_completed",
                final_mapping=result.final_mapping,
                requires_human_review=result.requires_human_review,
                review_fields=result.review_fields,
                participating=list(result.participating_providers),
                execution_time_ms=round(result.execution_time_ms, 2),
            )
            return result
