"""Transactions over the daily log: applying, inverting, describing, formatting.

Everything in this module is pure; the store is the only place a live log
is mutated, and it does so through ``apply_transactions``.
"""

from collections.abc import Callable, Iterable

from train_log.normalization import normalize_unit_set_display
from train_log.types import (
    TRN,
    AddTransaction,
    AllocationDetails,
    Batch,
    DailyLog,
    RemoveTransaction,
    Transaction,
    UnitSet,
)

ADD_PREFIX = "🟩 "
REMOVE_PREFIX = "🟥 "


def copy_log(log: DailyLog) -> DailyLog:
    """Copy both levels of a log (details are immutable)."""
    return {trn: dict(allocations) for trn, allocations in log.items()}


def lookup(log: DailyLog, service_id: TRN, unit_set_id: UnitSet) -> AllocationDetails | None:
    return log.get(service_id, {}).get(unit_set_id)


def apply_transaction(log: DailyLog, transaction: Transaction) -> None:
    """Apply one transaction in place, dropping TRNs left with no unit sets."""
    if isinstance(transaction, AddTransaction):
        log.setdefault(transaction.service_id, {})[transaction.unit_set_id] = (
            transaction.details
        )
        return
    allocations = log.get(transaction.service_id)
    if allocations is None or transaction.unit_set_id not in allocations:
        return
    del allocations[transaction.unit_set_id]
    if not allocations:
        del log[transaction.service_id]


def apply_transactions(log: DailyLog, transactions: Iterable[Transaction]) -> None:
    for transaction in transactions:
        apply_transaction(log, transaction)


def net_effect(transactions: Iterable[Transaction]) -> dict[tuple[TRN, UnitSet], Transaction]:
    """The last transaction for each key touched by a batch, in first-touch order."""
    final: dict[tuple[TRN, UnitSet], Transaction] = {}
    for transaction in transactions:
        final[transaction.key] = transaction
    return final


def is_noop(transactions: Iterable[Transaction], reference: DailyLog) -> bool:
    """Whether applying the batch would leave the log exactly as it is."""
    for (service_id, unit_set_id), transaction in net_effect(transactions).items():
        existing = lookup(reference, service_id, unit_set_id)
        if isinstance(transaction, AddTransaction):
            if existing != transaction.details:
                return False
        elif existing is not None:
            return False
    return True


def invert_transactions(transactions: Batch, reference: DailyLog) -> Batch:
    """Build the batch that undoes ``transactions`` applied on top of ``reference``.

    Each step is inverted against the state immediately before it, and the
    inverses are emitted in reverse order, so a batch touching one key twice
    still inverts back to the reference state. A key that did not exist
    before a step is restored by removing it.
    """
    state = copy_log(reference)
    inverse: Batch = []
    for transaction in transactions:
        previous = lookup(state, transaction.service_id, transaction.unit_set_id)
        if previous is None:
            inverse.append(RemoveTransaction(transaction.service_id, transaction.unit_set_id))
        else:
            inverse.append(
                AddTransaction(transaction.service_id, transaction.unit_set_id, previous)
            )
        apply_transaction(state, transaction)
    inverse.reverse()
    return inverse


def _escape_pipes(text: str) -> str:
    return text.replace("|", "\\|")


def details_to_string(details: AllocationDetails) -> str:
    parts = [f"sources: {_escape_pipes(details.sources)}"]
    if details.notes:
        parts.append(f"notes: {_escape_pipes(details.notes)}")
    if details.withdrawn:
        parts.append("withdrawn")
    if details.index is not None:
        parts.append(f"index: {details.index}")
    return " | ".join(parts)


def entry_to_string(service_id: TRN, unit_set_id: UnitSet, details: AllocationDetails) -> str:
    return f"{service_id} - {unit_set_id} ({details_to_string(details)})"


def describe_transactions(
    transactions: Iterable[Transaction],
    reference: DailyLog,
    add_prefix: str = ADD_PREFIX,
    remove_prefix: str = REMOVE_PREFIX,
) -> str:
    """List what a batch removes and adds, one line per entry.

    An existing entry at a touched key is always listed as removed, so an
    update shows up as the old entry followed by the new one.
    """
    lines: list[str] = []
    for transaction in transactions:
        existing = lookup(reference, transaction.service_id, transaction.unit_set_id)
        if existing is not None:
            lines.append(
                remove_prefix
                + entry_to_string(transaction.service_id, transaction.unit_set_id, existing)
            )
        if isinstance(transaction, AddTransaction):
            lines.append(
                add_prefix
                + entry_to_string(
                    transaction.service_id, transaction.unit_set_id, transaction.details
                )
            )
    return "\n".join(lines)


def sorted_allocations(
    allocations: dict[UnitSet, AllocationDetails],
) -> list[tuple[UnitSet, AllocationDetails]]:
    return sorted(allocations.items(), key=lambda item: item[1].effective_index)


def _join_descriptions(
    descriptions: list[str], ordered: list[tuple[UnitSet, AllocationDetails]]
) -> str:
    if len(ordered) > 1:
        indices = {details.effective_index for _, details in ordered}
        if len(indices) == len(ordered):
            still_running = [i for i, (_, details) in enumerate(ordered) if not details.withdrawn]
            if not still_running:
                # Each set replaced the one before it
                return " then ".join(descriptions)
            if still_running == [len(ordered) - 1]:
                # ...and the last one is still out there
                return f"{' then '.join(descriptions[:-1])} now {descriptions[-1]}"
    return "; ".join(descriptions)


def format_allocation_line(
    service_id: TRN,
    allocations: dict[UnitSet, AllocationDetails],
    normalize: Callable[[str], str] = normalize_unit_set_display,
) -> str:
    """Render one TRN of the public log, followed by a subtext line of sources."""
    ordered = sorted_allocations(allocations)
    descriptions = []
    for unit_set_id, details in ordered:
        description = normalize(unit_set_id)
        if details.withdrawn:
            description = f"~~{description}~~"
        if details.notes:
            description += f" ({details.notes})"
        descriptions.append(description)
    sources = "; ".join(details.sources for _, details in ordered)
    return f"{service_id} - {_join_descriptions(descriptions, ordered)}\n-# {sources}"


def format_full_log(
    log: DailyLog, normalize: Callable[[str], str] = normalize_unit_set_display
) -> str:
    return "\n".join(
        format_allocation_line(service_id, log[service_id], normalize)
        for service_id in sorted(log)
    )
