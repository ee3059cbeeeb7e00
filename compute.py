import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

from schemas import EqualSplit, FixedAmountSplit, PercentageSplit, SplitRule, SplitType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
EPSILON = Decimal("0.01")
HUNDRED = Decimal("100")
# largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")


# ============== Errors ==============
class SplitError(ValueError):
    """Base class for errors raised while building an expense split."""


class InvalidAmount(SplitError):
    pass


class InvalidSplit(SplitError):
    pass


class UnknownParticipant(SplitError):
    def __init__(self, participant_ids: Iterable[int]):
        self.participant_ids = sorted(participant_ids)
        super().__init__(f"Unknown participant(s): {', '.join(str(p) for p in self.participant_ids)}")


# ============== Records ==============
@dataclass
class SplitShare:
    amount: Decimal
    percentage: Optional[Decimal] = None

    def to_json(self) -> Dict[str, str]:
        data = {"amount": str(self.amount)}
        if self.percentage is not None:
            data["percentage"] = str(self.percentage)
        return data


@dataclass
class ExpenseShares:
    """Read-side view of a stored expense: who paid and what everyone owes."""
    payer_id: int
    shares: Dict[int, Decimal] = field(default_factory=dict)

    @classmethod
    def from_split_details(cls, payer_id: int, split_details: Optional[dict]) -> "ExpenseShares":
        """
        split_details: {"<participant id>": {"amount": "10.00", "percentage": "33.33"}}
        Entries that can't be parsed are skipped; historical data is never rejected.
        """
        shares = {}
        if split_details is not None and not isinstance(split_details, dict):
            logger.warning("Ignoring split details of type %s for payer %s", type(split_details).__name__, payer_id)
            split_details = None
        for key, entry in (split_details or {}).items():
            raw = entry.get("amount") if isinstance(entry, dict) else entry
            try:
                amount = to_dec(raw)
                pid = int(key)
            except (TypeError, ValueError, InvalidOperation):
                logger.warning("Skipping malformed split entry %r=%r for payer %s", key, entry, payer_id)
                continue
            if not amount.is_finite():
                logger.warning("Skipping non-finite split entry %r=%r for payer %s", key, entry, payer_id)
                continue
            shares[pid] = amount
        return cls(payer_id=int(payer_id), shares=shares)


@dataclass
class RecordedPayment:
    from_participant_id: int
    to_participant_id: int
    amount: Decimal


@dataclass
class Balance:
    participant_id: int
    name: str
    net_balance: Decimal  # positive means they are owed money; negative means they owe
    owed_by: Dict[int, Decimal] = field(default_factory=dict)
    owes_to: Dict[int, Decimal] = field(default_factory=dict)


@dataclass
class SuggestedSettlement:
    from_participant_id: int
    to_participant_id: int
    amount: Decimal
    from_name: Optional[str] = None
    to_name: Optional[str] = None


# ============== Helpers ==============
def to_dec(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if x is None or isinstance(x, bool):
        raise TypeError(f"Not a decimal value: {x!r}")
    return Decimal(str(x))


def round2(d: Decimal) -> Decimal:
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(value) -> Decimal:
    """Parse a currency amount; it must be positive with at most two decimals."""
    try:
        amount = to_dec(value)
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidAmount(f"Amount {value!r} is not a number.")
    if not amount.is_finite():
        raise InvalidAmount(f"Amount {value!r} is not a finite number.")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {amount}.")
    if amount != amount.quantize(CENT):
        raise InvalidAmount(f"Amount {amount} has more than two decimal places.")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"Amount {amount} exceeds the maximum of {MAX_AMOUNT}.")
    return round2(amount)


def allocate_cents(total: Decimal, weights: Sequence) -> Dict[int, Decimal]:
    """
    Largest-remainder allocation of `total` across (participant_id, weight) pairs.
    The returned amounts sum to exactly `total`; leftover cents go to the largest
    fractional remainders, ties broken by position in `weights`.
    """
    cents = int(round2(total) * 100)
    weight_sum = sum((w for _, w in weights), Decimal("0"))
    if weight_sum <= 0:
        raise InvalidSplit("Split weights must add up to more than zero.")
    raw = [(pid, Decimal(cents) * w / weight_sum) for pid, w in weights]
    floors = [int(r) for _, r in raw]
    leftover = cents - sum(floors)
    order = sorted(range(len(raw)), key=lambda i: (-(raw[i][1] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1
    return {pid: (Decimal(c) / 100).quantize(CENT) for (pid, _), c in zip(raw, floors)}


def _check_known(ids: Iterable[int], participants: Sequence[int]) -> None:
    known = set(participants)
    unknown = {pid for pid in ids if pid not in known}
    if unknown:
        raise UnknownParticipant(unknown)


# ============== Split computation ==============
def compute_split(total_amount, rule: SplitRule, participants: Sequence[int]) -> Dict[int, SplitShare]:
    """
    Resolve a split rule into per-participant owed amounts (the stored splitDetails).

    participants: ids of everyone the expense may be split among (the event participants).
    Raises InvalidAmount, InvalidSplit or UnknownParticipant; never touches storage.
    The payer may appear in the result; balances skip it.
    """
    total = validate_amount(total_amount)

    if isinstance(rule, EqualSplit):
        selected = list(dict.fromkeys(rule.participant_ids)) if rule.participant_ids is not None else list(participants)
        _check_known(selected, participants)
        if not selected:
            raise InvalidSplit("An equal split needs at least one participant.")
        amounts = allocate_cents(total, [(pid, Decimal("1")) for pid in selected])
        return {pid: SplitShare(amount=amounts[pid]) for pid in selected}

    if isinstance(rule, PercentageSplit):
        _check_known(rule.percentages, participants)
        if not rule.percentages:
            raise InvalidSplit("A percentage split needs at least one participant.")
        percentages = {pid: to_dec(p) for pid, p in rule.percentages.items()}
        if any(p < 0 for p in percentages.values()):
            raise InvalidSplit("Percentages can't be negative.")
        psum = sum(percentages.values(), Decimal("0"))
        if abs(psum - HUNDRED) > EPSILON:
            raise InvalidSplit(f"Percentages add up to {psum}, expected 100.")
        amounts = allocate_cents(total, list(percentages.items()))
        return {pid: SplitShare(amount=amounts[pid], percentage=p) for pid, p in percentages.items()}

    if isinstance(rule, FixedAmountSplit):
        _check_known(rule.amounts, participants)
        if not rule.amounts:
            raise InvalidSplit("A fixed amount split needs at least one participant.")
        shares = {}
        for pid, raw in rule.amounts.items():
            amount = to_dec(raw)
            if amount < 0:
                raise InvalidSplit(f"Amount for participant {pid} can't be negative.")
            if amount != amount.quantize(CENT):
                raise InvalidAmount(f"Amount {amount} for participant {pid} has more than two decimal places.")
            shares[pid] = SplitShare(amount=round2(amount))
        ssum = sum((s.amount for s in shares.values()), Decimal("0"))
        if abs(ssum - total) > EPSILON:
            raise InvalidSplit(f"Sum of amounts ({ssum}) != total ({total}).")
        return shares

    raise InvalidSplit(f"Unsupported split type {getattr(rule, 'type', rule)!r}.")


def split_type_of(rule: SplitRule) -> SplitType:
    return SplitType(rule.type)


# ============== Balances ==============
def _add(book: Dict[int, Decimal], key: int, amount: Decimal) -> None:
    book[key] = book.get(key, Decimal("0.00")) + amount


def _apply_payment(owes_to, owed_by, payer: int, payee: int, amount: Decimal) -> None:
    # payer handed `amount` to payee: shrink what payer owes payee, overflow becomes payee's debt
    outstanding = owes_to[payer].pop(payee, Decimal("0.00"))
    owed_by[payee].pop(payer, None)
    remaining = outstanding - amount
    if remaining >= EPSILON:
        owes_to[payer][payee] = remaining
        owed_by[payee][payer] = remaining
    elif remaining <= -EPSILON:
        _add(owes_to[payee], payer, -remaining)
        _add(owed_by[payer], payee, -remaining)


def compute_balances(participants, expenses: Iterable[ExpenseShares],
                     settlements: Optional[Iterable[RecordedPayment]] = None) -> List[Balance]:
    """
    participants: records with `id` and `name` (Participant rows work), in display order.
    expenses: ExpenseShares for every expense of the event.
    settlements: recorded payments to net against the expense debts; None leaves them out.
    Returns a Balance for every participant with a non-zero net or any open debt.
    """
    names = {int(p.id): p.name for p in participants}
    net = {pid: Decimal("0.00") for pid in names}
    owed_by = {pid: {} for pid in names}
    owes_to = {pid: {} for pid in names}

    for expense in expenses:
        payer = expense.payer_id
        for debtor, owed in expense.shares.items():
            if debtor == payer:
                continue
            if debtor not in names or payer not in names:
                logger.debug("Dropping share %s -> %s: not an event participant", debtor, payer)
                continue
            if not owed.is_finite() or owed <= 0:
                if not owed.is_finite() or owed < 0:
                    logger.warning("Dropping invalid share %s for %s -> %s", owed, debtor, payer)
                continue
            net[debtor] -= owed
            net[payer] += owed
            _add(owes_to[debtor], payer, owed)
            _add(owed_by[payer], debtor, owed)

    for payment in settlements or []:
        payer, payee, amount = payment.from_participant_id, payment.to_participant_id, payment.amount
        if payer == payee or payer not in names or payee not in names or not amount.is_finite() or amount <= 0:
            logger.debug("Ignoring recorded payment %s -> %s (%s)", payer, payee, amount)
            continue
        net[payer] += amount
        net[payee] -= amount
        _apply_payment(owes_to, owed_by, payer, payee, amount)

    balances = []
    for pid, name in names.items():
        if abs(net[pid]) > EPSILON or owed_by[pid] or owes_to[pid]:
            balances.append(Balance(
                participant_id=pid,
                name=name,
                net_balance=round2(net[pid]),
                owed_by={k: round2(v) for k, v in owed_by[pid].items()},
                owes_to={k: round2(v) for k, v in owes_to[pid].items()},
            ))
    return balances


# ============== Settlement ==============
def suggest_settlements(balances: Iterable[Balance], by_amount: bool = True) -> List[SuggestedSettlement]:
    """
    Greedy debt simplification: the largest debtor pays the largest creditor until
    one side is cleared. With by_amount=False both sides keep their input order.
    Anyone at least a cent away from zero takes part, so one-cent remainders
    from uneven splits get settled too.
    Emits at most (creditors + debtors - 1) settlements.
    """
    names = {}
    creditors = []
    debtors = []
    for b in balances:
        names[b.participant_id] = b.name
        if b.net_balance >= CENT:
            creditors.append([b.participant_id, b.net_balance])  # mutable amt
        elif b.net_balance <= -CENT:
            debtors.append([b.participant_id, -b.net_balance])   # store positive owed amount

    if by_amount:
        creditors.sort(key=lambda x: x[1], reverse=True)
        debtors.sort(key=lambda x: x[1], reverse=True)

    i = j = 0
    settlements = []
    while i < len(creditors) and j < len(debtors):
        c_uid, c_amt = creditors[i]
        d_uid, d_amt = debtors[j]
        transfer = min(c_amt, d_amt)
        settlements.append(SuggestedSettlement(
            from_participant_id=d_uid,
            to_participant_id=c_uid,
            amount=round2(transfer),
            from_name=names.get(d_uid),
            to_name=names.get(c_uid),
        ))
        creditors[i][1] = c_amt - transfer
        debtors[j][1] = d_amt - transfer
        if creditors[i][1] < CENT:
            i += 1
        if debtors[j][1] < CENT:
            j += 1
    return settlements
