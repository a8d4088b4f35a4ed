"""
Decision and execution pipeline.

Modules:
    - decision: DecisionEngine and its ordered checks
    - advisory: AdvisoryContract parsing and the time-boxed review service
    - context: SystemContextAdapter and ledger-derived snapshots
    - lifecycle_store: Recommendation rows with versioned compare-and-swap
    - lifecycle_manager: Atomic, audited lifecycle transitions
    - executor: Four-gate Executor, the only path to the venue
    - orchestrator: Facts + Intent -> decision -> execution wiring

Example:
    >>> from execution.decision import DecisionEngine
    >>> from execution.executor import Executor, ExecutionControls
    >>> from execution.lifecycle_manager import LifecycleManager
    >>> from execution.lifecycle_store import InMemoryRecommendationStore
    >>> from execution.orchestrator import Orchestrator
    >>>
    >>> manager = LifecycleManager(InMemoryRecommendationStore())
    >>> orchestrator = Orchestrator(DecisionEngine(), manager, Executor(manager, venue))
    >>> result = await orchestrator.process(facts, intent, ExecutionControls(mode="semi_automated"))
"""
