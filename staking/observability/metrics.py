# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports staking-pool metrics in Prometheus format.

Metrics:
- Total staked, fixed obligation
- Fixed reward pool, dynamic pools (to allocate / allocated)
- Operations committed and rejected, by type
- Reward clock state
"""

from prometheus_client import Counter, Gauge, CollectorRegistry, generate_latest

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# LEDGER METRICS
# ═══════════════════════════════════════════════════════════════════

total_staked = Gauge(
    'dualstake_total_staked',
    'Total tokens staked across all accounts',
    registry=metrics_registry
)

fixed_obligation = Gauge(
    'dualstake_fixed_obligation',
    'Worst-case fixed reward still owed if every stake is held to expiry',
    registry=metrics_registry
)

accounts_total = Gauge(
    'dualstake_accounts_total',
    'Number of account records',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# FUNDING POOL METRICS
# ═══════════════════════════════════════════════════════════════════

fixed_rewards_available = Gauge(
    'dualstake_fixed_rewards_available',
    'Tokens reserved in the fixed reward pool',
    registry=metrics_registry
)

dynamic_tokens_to_allocate = Gauge(
    'dualstake_dynamic_tokens_to_allocate',
    'Dynamic reward tokens deposited but not yet allocated',
    registry=metrics_registry
)

dynamic_tokens_allocated = Gauge(
    'dualstake_dynamic_tokens_allocated',
    'Dynamic reward tokens allocated to accounts but not yet paid out',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# OPERATION METRICS
# ═══════════════════════════════════════════════════════════════════

operations_total = Counter(
    'dualstake_operations_total',
    'Total committed operations',
    ['op'],
    registry=metrics_registry
)

operations_rejected_total = Counter(
    'dualstake_operations_rejected_total',
    'Total rejected operations',
    ['op', 'error'],
    registry=metrics_registry
)

reward_clock_start = Gauge(
    'dualstake_reward_clock_start',
    'Reward clock start timestamp (0 = not started)',
    registry=metrics_registry
)


def update_metrics(contract):
    """
    Sync gauges from a StakingContract.

    Args:
        contract: StakingContract instance
    """
    state = contract.state

    total_staked.set(state.total_staked)
    fixed_obligation.set(state.fixed_obligation)
    accounts_total.set(len(state.all_accounts()))

    fixed_rewards_available.set(state.fixed_rewards_available)
    dynamic_tokens_to_allocate.set(state.dynamic_tokens_to_allocate)
    dynamic_tokens_allocated.set(state.dynamic_tokens_allocated)

    reward_clock_start.set(state.reward_start_time)


def record_operation(op):
    operations_total.labels(op=op.name).inc()


def record_rejection(op, error: Exception):
    operations_rejected_total.labels(op=op.name, error=type(error).__name__).inc()


def export_metrics() -> bytes:
    return generate_latest(metrics_registry)
