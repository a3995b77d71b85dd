"""
Dynamic Allocation Batch Processor.

Two phases driven by the administrator:
  1. deposit_dynamic: pull tokens into dynamic_tokens_to_allocate (repeatable)
  2. allocate: credit unclaimed_dynamic_reward per address, in as many
     bounded batches as the address set needs

A batch is all-or-nothing. Without a batch_id, resubmitting the same batch
credits every listed address again.
"""
from typing import Dict, List, Optional
import logging
from protocol.types.common import InputIntegrityError, FundingShortfall
from .ledger import StakingState
from .token import Transfer
from .uint import require_uint, checked_add

logger = logging.getLogger(__name__)


def deposit_dynamic(state: StakingState, amount: int, transfers: List[Transfer],
                    admin: str, pool_address: str) -> int:
    require_uint(amount, "amount", state.bits)
    state.add("dynamic_tokens_to_allocate", amount)
    if amount > 0:
        transfers.append(Transfer(sender=admin, recipient=pool_address, amount=amount))
    return state.dynamic_tokens_to_allocate


def allocate(state: StakingState, addresses: List[str], amounts: List[int],
             declared_total: int, batch_id: Optional[str] = None) -> Dict[str, int]:
    """
    Credit one batch of dynamic rewards.

    Args:
        addresses: Recipients (duplicates are credited cumulatively)
        amounts: Credit per recipient, same length as `addresses`
        declared_total: Caller's total, cross-checked against sum(amounts)
        batch_id: Optional replay guard; a previously applied id is rejected

    Returns:
        address -> amount credited by this batch

    Raises:
        InputIntegrityError: length mismatch, sum mismatch, replayed batch_id
        FundingShortfall: dynamic_tokens_to_allocate < declared_total
    """
    require_uint(declared_total, "total", state.bits)
    if len(addresses) != len(amounts):
        raise InputIntegrityError(
            f"Length mismatch: {len(addresses)} addresses, {len(amounts)} amounts"
        )
    if batch_id is not None and batch_id in state.applied_batches:
        raise InputIntegrityError(f"Allocation batch {batch_id!r} already applied")
    if state.dynamic_tokens_to_allocate < declared_total:
        raise FundingShortfall(
            f"Dynamic pool holds {state.dynamic_tokens_to_allocate}, "
            f"batch declares {declared_total}"
        )

    computed = 0
    for i, amount in enumerate(amounts):
        require_uint(amount, f"amounts[{i}]", state.bits)
        computed = checked_add(computed, amount, state.bits)
    if computed != declared_total:
        raise InputIntegrityError(
            f"Sum mismatch: amounts sum to {computed}, declared total {declared_total}"
        )

    credited: Dict[str, int] = {}
    for address, amount in zip(addresses, amounts):
        acc = state.ensure_account(address)
        acc.unclaimed_dynamic_reward = checked_add(acc.unclaimed_dynamic_reward, amount, state.bits)
        credited[address] = credited.get(address, 0) + amount

    state.sub("dynamic_tokens_to_allocate", declared_total)
    state.add("dynamic_tokens_allocated", declared_total)
    if batch_id is not None:
        state.applied_batches.add(batch_id)

    logger.debug(f"Allocated {declared_total} across {len(credited)} address(es)")
    return credited
