# billing/commands.py
"""
Business-event commands.

One command per money-moving event. Each command:
1. Validates input (DRF input serializer)
2. Checks preconditions under row locks (student, capacity resource, payment)
3. Resolves accounts from billing.posting_rules
4. Posts the journal entry, records the student transaction linked to it
   and applies the account balance deltas
5. Saves the billing document and schedules the audit record

Everything runs inside posting_command: one atomic block, retried on
transient lock conflicts, LedgerError -> CommandResult.fail.

Corrections:
- reverse_student_transaction / cancel_enrollment: compensating entries
  within the grace period (history kept)
- delete_posting: the narrow grace-period delete path (history removed)
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from accounting import chart, journal_store
from accounting.authz import ActorContext
from accounting.commands import entry_snapshot, posting_command
from accounting.exceptions import PreconditionFailedError, ValidationError
from accounting.journal_store import LineSpec, next_sequence_value, to_money
from accounting.models import JournalEntry
from accounting.serializers import validate_input
from audit.emitter import emit_audit
from billing.models import (
    DOCUMENT_MODELS,
    ClassGroup,
    Enrollment,
    FeeCharge,
    FeePayment,
    FeeStructure,
    PaymentRefund,
    PostedDocument,
    Room,
    UniformSale,
    Waiver,
)
from billing.posting_rules import FeeCategory, PostingKind, PostingRule, resolve
from billing.serializers import (
    DeletionResultSerializer,
    EnrollmentInputSerializer,
    FeeChargeInputSerializer,
    PaymentInputSerializer,
    PostingResultSerializer,
    RefundInputSerializer,
    ReversalResultSerializer,
    UniformSaleInputSerializer,
    WaiverInputSerializer,
)
from projections.account_balance import account_balance_projection
from projections.write_barrier import command_writes_allowed
from students import subledger
from students.models import Student, StudentTransaction


logger = logging.getLogger(__name__)

Status = PostedDocument.Status


# =============================================================================
# Helpers
# =============================================================================

def _active_student(student_id: Any) -> Student:
    student = subledger.get_student(student_id, lock=True)
    if not student.is_active:
        raise PreconditionFailedError(
            f"Student {student.reg_number} is not active.",
            details={"student_id": student.pk},
        )
    return student


def _post_student_event(
    actor: ActorContext,
    *,
    student: Student,
    rule: PostingRule,
    amount: Decimal,
    txn_type: str,
    description: str,
    term: str,
    academic_year: Optional[int],
    context: str,
    reference: str = "",
    entry_date=None,
) -> tuple[JournalEntry, StudentTransaction]:
    """
    Post the two-line entry for ``rule``, the linked student transaction and
    the account balance deltas.

    The receivable side is tagged with the student.
    """
    lines = []
    for code, debit, credit in ((rule.debit, amount, Decimal("0")), (rule.credit, Decimal("0"), amount)):
        account = chart.get_postable_account(code)
        lines.append(LineSpec(
            account_code=code,
            debit=debit,
            credit=credit,
            description=description,
            student_id=student.pk if account.is_receivable else None,
        ))

    entry = journal_store.post(
        lines=lines,
        description=description,
        reference=reference,
        entry_date=entry_date,
        created_by=actor.actor_id,
    )
    txn = subledger.record(
        student,
        txn_type,
        amount,
        description,
        journal_entry=entry,
        term=term,
        academic_year=academic_year,
        context=context,
        created_by=actor.actor_id,
    )
    account_balance_projection.apply_entry(entry)
    return entry, txn


def _create_document(model, **fields) -> PostedDocument:
    with command_writes_allowed():
        return model.objects.create(**fields)


def _save_document(document: PostedDocument, *fields: str) -> None:
    with command_writes_allowed():
        document.save(update_fields=[*fields, "updated_at"])


def _audit_entity(document: PostedDocument) -> str:
    return type(document).__name__


def _audit_action(document: PostedDocument, verb: str) -> str:
    names = {
        Enrollment: "enrollment",
        FeePayment: "fee_payment",
        PaymentRefund: "payment_refund",
        Waiver: "waiver",
        UniformSale: "uniform_sale",
        FeeCharge: "fee_charge",
    }
    return f"{names[type(document)]}.{verb}"


def _posted(document: PostedDocument, entry: JournalEntry, txn: StudentTransaction, actor: ActorContext) -> Dict[str, Any]:
    emit_audit(
        _audit_action(document, "posted"),
        _audit_entity(document),
        document.pk,
        actor.actor_id,
        after={**document.snapshot(), "entry": entry_snapshot(entry)},
    )
    return {"document": document, "journal_entry": entry, "transaction": txn}


def find_document(txn: StudentTransaction, *, lock: bool = False) -> Optional[PostedDocument]:
    """Return the billing document that produced ``txn`` (None for manual adjustments)."""
    for model in DOCUMENT_MODELS:
        queryset = model.objects.select_for_update() if lock else model.objects
        document = queryset.filter(student_transaction=txn).first()
        if document is not None:
            return document
    return None


def _get_locked_transaction(transaction_id: Any) -> StudentTransaction:
    try:
        return StudentTransaction.objects.select_for_update().select_related("journal_entry").get(pk=transaction_id)
    except (StudentTransaction.DoesNotExist, ValueError, TypeError):
        raise ValidationError(
            f"Student transaction {transaction_id} not found.",
            details={"transaction_id": transaction_id},
        )


# =============================================================================
# Enrollment
# =============================================================================

def _lock_class_group(class_group_id: int) -> ClassGroup:
    try:
        class_group = ClassGroup.objects.select_for_update().get(pk=class_group_id)
    except ClassGroup.DoesNotExist:
        raise ValidationError(f"Class group {class_group_id} not found.", details={"class_group_id": class_group_id})
    if not class_group.is_active:
        raise PreconditionFailedError(f"Class group {class_group.name} is not active.", details={"class_group_id": class_group.pk})
    return class_group


def _lock_room(room_id: int) -> Room:
    try:
        room = Room.objects.select_for_update().select_related("hostel").get(pk=room_id)
    except Room.DoesNotExist:
        raise ValidationError(f"Room {room_id} not found.", details={"room_id": room_id})
    if not room.is_active or not room.hostel.is_active:
        raise PreconditionFailedError(f"Room {room} is not active.", details={"room_id": room.pk})
    return room


def _exact_fee(category: str, term: str, academic_year: int, **resource) -> Decimal:
    structure = FeeStructure.objects.filter(
        category=category,
        term=term,
        academic_year=academic_year,
        **resource,
    ).first()
    if structure is None or structure.amount <= 0:
        raise PreconditionFailedError(
            f"No {category.lower()} fee structure for {term} {academic_year}.",
            details={
                "category": category,
                "term": term,
                "academic_year": academic_year,
                **{key: getattr(value, "pk", value) for key, value in resource.items()},
            },
        )
    return structure.amount


@posting_command("enrollment", serializer_class=PostingResultSerializer)
def enroll_student(
    actor: ActorContext,
    *,
    student_id: int,
    kind: str,
    term: str,
    academic_year: int,
    class_group_id: Optional[int] = None,
    room_id: Optional[int] = None,
):
    """
    Enroll a student in a class or a boarding room and charge the fee.

    Capacity is counted under a row lock on the class group / room, so two
    requests racing for the last seat cannot both succeed.
    """
    data = validate_input(EnrollmentInputSerializer, {
        "kind": kind,
        "term": term,
        "academic_year": academic_year,
        "class_group_id": class_group_id,
        "room_id": room_id,
    })
    kind, term, academic_year = data["kind"], data["term"], data["academic_year"]
    student = _active_student(student_id)

    if Enrollment.objects.filter(
        student=student,
        kind=kind,
        term=term,
        academic_year=academic_year,
        status=Status.POSTED,
    ).exists():
        raise PreconditionFailedError(
            f"Student {student.reg_number} already has a {kind.lower()} enrollment for {term} {academic_year}.",
            details={"student_id": student.pk, "kind": kind},
        )

    class_group = room = None
    if kind == Enrollment.Kind.CLASS:
        class_group = _lock_class_group(data["class_group_id"])
        capacity, occupied = class_group.capacity, Enrollment.objects.filter(
            class_group=class_group, term=term, academic_year=academic_year, status=Status.POSTED,
        ).count()
        category = FeeCategory.TUITION
        amount = _exact_fee(category, term, academic_year, class_group=class_group)
        resource_name = class_group.name
    else:
        room = _lock_room(data["room_id"])
        if not room.hostel.accepts(student.gender):
            raise PreconditionFailedError(
                f"Hostel {room.hostel.name} does not accept {student.get_gender_display().lower()} students.",
                details={"student_id": student.pk, "hostel_id": room.hostel_id},
            )
        capacity, occupied = room.capacity, Enrollment.objects.filter(
            room=room, term=term, academic_year=academic_year, status=Status.POSTED,
        ).count()
        category = FeeCategory.BOARDING
        amount = _exact_fee(category, term, academic_year, hostel=room.hostel)
        resource_name = str(room)

    if occupied >= capacity:
        raise PreconditionFailedError(
            f"{resource_name} is full ({occupied}/{capacity}).",
            details={"capacity": capacity, "occupied": occupied},
        )

    description = f"{Enrollment.Kind(kind).label} enrollment {term} {academic_year}: {resource_name}"
    entry, txn = _post_student_event(
        actor,
        student=student,
        rule=resolve(PostingKind.CHARGE, category),
        amount=amount,
        txn_type=StudentTransaction.Type.DEBIT,
        description=description,
        term=term,
        academic_year=academic_year,
        context="enrollment",
    )
    enrollment = _create_document(
        Enrollment,
        student=student,
        term=term,
        academic_year=academic_year,
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        kind=kind,
        class_group=class_group,
        room=room,
        amount=amount,
    )
    return _posted(enrollment, entry, txn, actor)


# =============================================================================
# Payments and refunds
# =============================================================================

@posting_command("fee_payment", serializer_class=PostingResultSerializer)
def pay_fee(
    actor: ActorContext,
    *,
    student_id: int,
    category: str,
    amount,
    method: str,
    term: str,
    academic_year: int,
    currency: str = "",
    exchange_rate=Decimal("1"),
    reference: str = "",
    payment_date: Optional[datetime] = None,
):
    """
    Record a fee payment.

    The ledger is posted in the base currency at amount * exchange_rate;
    the settlement account follows the payment method.
    Inactive students may still pay off what they owe.
    """
    data = validate_input(PaymentInputSerializer, {
        "category": category,
        "amount": amount,
        "currency": currency or "",
        "method": method,
        "exchange_rate": exchange_rate,
        "reference": reference,
        "term": term,
        "academic_year": academic_year,
        "payment_date": payment_date,
    })
    student = subledger.get_student(student_id, lock=True)
    payment_currency = chart.get_currency(data["currency"] or None)
    base_amount = to_money(data["amount"] * data["exchange_rate"], "base_amount")
    if base_amount <= 0:
        raise ValidationError("Payment base amount rounds to zero.", details={"base_amount": str(base_amount)})

    receipt_number = f"RCT-{next_sequence_value('receipt_number'):06d}"
    paid_at = data["payment_date"]
    description = f"Fee payment {receipt_number} ({FeeCategory(data['category']).label})"

    entry, txn = _post_student_event(
        actor,
        student=student,
        rule=resolve(PostingKind.PAYMENT, data["category"], data["method"]),
        amount=base_amount,
        txn_type=StudentTransaction.Type.CREDIT,
        description=description,
        term=data["term"],
        academic_year=data["academic_year"],
        context="payment",
        reference=receipt_number,
        entry_date=paid_at.date() if paid_at else None,
    )
    payment = _create_document(
        FeePayment,
        student=student,
        term=data["term"],
        academic_year=data["academic_year"],
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        category=data["category"],
        amount=data["amount"],
        currency=payment_currency,
        exchange_rate=data["exchange_rate"],
        base_amount=base_amount,
        method=data["method"],
        receipt_number=receipt_number,
        reference=data["reference"],
        **({"payment_date": paid_at} if paid_at else {}),
    )
    return _posted(payment, entry, txn, actor)


@posting_command("payment_refund", serializer_class=PostingResultSerializer)
def refund_payment(actor: ActorContext, *, payment_id: int, amount=None, reason: str = ""):
    """
    Refund all (default) or part of a payment's remaining base amount.

    Posts Dr receivable / Cr settlement and a student DEBIT.
    """
    data = validate_input(RefundInputSerializer, {"amount": amount, "reason": reason})
    try:
        payment = FeePayment.objects.select_for_update().select_related("student").get(pk=payment_id)
    except FeePayment.DoesNotExist:
        raise ValidationError(f"Payment {payment_id} not found.", details={"payment_id": payment_id})

    if payment.status == Status.REVERSED:
        raise PreconditionFailedError(
            f"Payment {payment.receipt_number} was reversed.",
            details={"payment_id": payment.pk},
        )
    if payment.status == Status.REFUNDED or payment.refundable_amount <= 0:
        raise PreconditionFailedError(
            f"Payment {payment.receipt_number} is already fully refunded.",
            details={"payment_id": payment.pk},
        )

    refund_amount = payment.refundable_amount if data["amount"] is None else to_money(data["amount"])
    if refund_amount <= 0:
        raise ValidationError("Refund amount must be greater than zero.", details={"amount": str(refund_amount)})
    if refund_amount > payment.refundable_amount:
        raise PreconditionFailedError(
            f"Refund of {refund_amount} exceeds the refundable {payment.refundable_amount}.",
            details={
                "payment_id": payment.pk,
                "amount": str(refund_amount),
                "refundable": str(payment.refundable_amount),
            },
        )

    before = payment.snapshot()
    description = f"Refund of {payment.receipt_number}" + (f": {data['reason']}" if data["reason"] else "")
    entry, txn = _post_student_event(
        actor,
        student=payment.student,
        rule=resolve(PostingKind.REFUND, payment.category, payment.method),
        amount=refund_amount,
        txn_type=StudentTransaction.Type.DEBIT,
        description=description,
        term=payment.term,
        academic_year=payment.academic_year,
        context="refund",
        reference=payment.receipt_number,
    )
    refund = _create_document(
        PaymentRefund,
        student=payment.student,
        term=payment.term,
        academic_year=payment.academic_year,
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        payment=payment,
        amount=refund_amount,
        reason=data["reason"],
    )

    payment.refunded_amount += refund_amount
    payment.refresh_refund_status()
    _save_document(payment, "refunded_amount", "status")

    emit_audit(
        "fee_payment.refunded",
        "FeePayment",
        payment.pk,
        actor.actor_id,
        before=before,
        after={**payment.snapshot(), "refund": refund.pk, "entry": entry_snapshot(entry)},
    )
    return {"document": refund, "journal_entry": entry, "transaction": txn}


def _release_refund(refund: PaymentRefund) -> None:
    payment = FeePayment.objects.select_for_update().get(pk=refund.payment_id)
    payment.refunded_amount -= refund.amount
    payment.refresh_refund_status()
    _save_document(payment, "refunded_amount", "status")


# =============================================================================
# Waivers and charges
# =============================================================================

@posting_command("waiver", serializer_class=PostingResultSerializer)
def waive_fee(
    actor: ActorContext,
    *,
    student_id: int,
    category: str,
    amount,
    reason: str,
    term: str,
    academic_year: int,
):
    """Write off part of a fee. Allowed for inactive students."""
    data = validate_input(WaiverInputSerializer, {
        "category": category,
        "amount": amount,
        "reason": reason,
        "term": term,
        "academic_year": academic_year,
    })
    student = subledger.get_student(student_id, lock=True)
    amount = to_money(data["amount"])

    entry, txn = _post_student_event(
        actor,
        student=student,
        rule=resolve(PostingKind.WAIVER, data["category"]),
        amount=amount,
        txn_type=StudentTransaction.Type.CREDIT,
        description=f"{FeeCategory(data['category']).label} waiver: {data['reason']}",
        term=data["term"],
        academic_year=data["academic_year"],
        context="waiver",
    )
    waiver = _create_document(
        Waiver,
        student=student,
        term=data["term"],
        academic_year=data["academic_year"],
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        category=data["category"],
        amount=amount,
        reason=data["reason"],
    )
    return _posted(waiver, entry, txn, actor)


@posting_command("uniform_sale", serializer_class=PostingResultSerializer)
def sell_uniform(
    actor: ActorContext,
    *,
    student_id: int,
    item_name: str,
    quantity: int,
    unit_price,
    term: str,
    academic_year: int,
):
    data = validate_input(UniformSaleInputSerializer, {
        "item_name": item_name,
        "quantity": quantity,
        "unit_price": unit_price,
        "term": term,
        "academic_year": academic_year,
    })
    student = _active_student(student_id)
    unit_price = to_money(data["unit_price"], "unit_price")
    total = to_money(unit_price * data["quantity"], "total")

    entry, txn = _post_student_event(
        actor,
        student=student,
        rule=resolve(PostingKind.CHARGE, FeeCategory.UNIFORM),
        amount=total,
        txn_type=StudentTransaction.Type.DEBIT,
        description=f"Uniform: {data['quantity']} x {data['item_name']} @ {unit_price}",
        term=data["term"],
        academic_year=data["academic_year"],
        context="uniform_sale",
    )
    sale = _create_document(
        UniformSale,
        student=student,
        term=data["term"],
        academic_year=data["academic_year"],
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        item_name=data["item_name"],
        quantity=data["quantity"],
        unit_price=unit_price,
        total=total,
    )
    return _posted(sale, entry, txn, actor)


@posting_command("fee_charge", serializer_class=PostingResultSerializer)
def charge_fee(
    actor: ActorContext,
    *,
    student_id: int,
    category: str,
    amount,
    term: str,
    academic_year: int,
    description: str = "",
):
    """
    Charge a transport, additional or other fee.

    Only active students can be charged; payments and waivers still settle
    the arrears of inactive ones.
    """
    data = validate_input(FeeChargeInputSerializer, {
        "category": category,
        "amount": amount,
        "description": description,
        "term": term,
        "academic_year": academic_year,
    })
    student = _active_student(student_id)
    amount = to_money(data["amount"])
    label = FeeCategory(data["category"]).label

    entry, txn = _post_student_event(
        actor,
        student=student,
        rule=resolve(PostingKind.CHARGE, data["category"]),
        amount=amount,
        txn_type=StudentTransaction.Type.DEBIT,
        description=f"{label}: {data['description']}" if data["description"] else label,
        term=data["term"],
        academic_year=data["academic_year"],
        context="fee_charge",
    )
    charge = _create_document(
        FeeCharge,
        student=student,
        term=data["term"],
        academic_year=data["academic_year"],
        journal_entry=entry,
        student_transaction=txn,
        created_by=actor.actor_id,
        category=data["category"],
        amount=amount,
        description=data["description"],
    )
    return _posted(charge, entry, txn, actor)


# =============================================================================
# Corrections
# =============================================================================

def _assert_document_correctable(document: Optional[PostedDocument]) -> None:
    if document is None:
        return
    if document.status == Status.REVERSED:
        raise PreconditionFailedError(
            f"{_audit_entity(document)} {document.pk} was already reversed.",
            details={"document_id": document.pk},
        )
    if isinstance(document, FeePayment) and document.refunds.filter(status=Status.POSTED).exists():
        raise PreconditionFailedError(
            f"Payment {document.receipt_number} has refunds; reverse or delete them first.",
            details={"payment_id": document.pk},
        )


def _reverse_transaction(
    actor: ActorContext,
    txn: StudentTransaction,
    reason: str,
    now: Optional[datetime],
) -> Dict[str, Any]:
    subledger.assert_reversible(txn, now=now)
    document = find_document(txn, lock=True)
    _assert_document_correctable(document)

    original_entry = txn.journal_entry
    suffix = f": {reason}" if reason else ""
    reversal_entry = journal_store.post_compensating(
        original_entry,
        created_by=actor.actor_id,
        description=f"Reversal of {original_entry.entry_number}{suffix}",
        entry_date=now.date() if now else None,
    )
    reversal_txn = subledger.reverse(
        txn,
        journal_entry=reversal_entry,
        now=now,
        created_by=actor.actor_id,
        description=f"Reversal: {txn.description}{suffix}",
    )
    account_balance_projection.apply_entry(reversal_entry)

    before = None
    if document is not None:
        before = document.snapshot()
        if isinstance(document, PaymentRefund):
            _release_refund(document)
        document.status = Status.REVERSED
        _save_document(document, "status")

    emit_audit(
        _audit_action(document, "reversed") if document else "student_transaction.reversed",
        _audit_entity(document) if document else "StudentTransaction",
        document.pk if document else txn.pk,
        actor.actor_id,
        before=before,
        after={
            **(document.snapshot() if document else {"transaction": txn.pk}),
            "reversal_entry": entry_snapshot(reversal_entry),
            "reason": reason,
        },
    )
    return {
        "document": document,
        "original_entry": original_entry,
        "reversal_entry": reversal_entry,
        "transaction": reversal_txn,
    }


@posting_command("transaction_reversal", serializer_class=ReversalResultSerializer)
def reverse_student_transaction(
    actor: ActorContext,
    *,
    transaction_id: int,
    reason: str = "",
    now: Optional[datetime] = None,
):
    """
    Compensating reversal of a student posting within the grace period.

    Posts the equal-and-opposite journal entry, the opposite sub-ledger
    transaction and marks the source document REVERSED.
    """
    txn = _get_locked_transaction(transaction_id)
    return _reverse_transaction(actor, txn, reason, now)


@posting_command("enrollment_cancellation", serializer_class=ReversalResultSerializer)
def cancel_enrollment(
    actor: ActorContext,
    *,
    enrollment_id: int,
    reason: str = "",
    now: Optional[datetime] = None,
):
    """Reverse an enrollment's charge within the grace period and free its seat."""
    try:
        enrollment = Enrollment.objects.select_for_update().get(pk=enrollment_id)
    except Enrollment.DoesNotExist:
        raise ValidationError(f"Enrollment {enrollment_id} not found.", details={"enrollment_id": enrollment_id})
    if enrollment.status != Status.POSTED:
        raise PreconditionFailedError(
            f"Enrollment {enrollment.pk} is {enrollment.get_status_display().lower()}.",
            details={"enrollment_id": enrollment.pk},
        )
    txn = _get_locked_transaction(enrollment.student_transaction_id)
    return _reverse_transaction(actor, txn, reason or "enrollment cancelled", now)


@posting_command("posting_deletion", serializer_class=DeletionResultSerializer)
def delete_posting(actor: ActorContext, *, transaction_id: int, now: Optional[datetime] = None):
    """
    Delete a student posting outright: document, sub-ledger transaction and
    journal entry, with the inverse balance deltas.

    Only within the grace period and only for transactions that were never
    reversed. Prefer reverse_student_transaction, which keeps history.
    """
    txn = _get_locked_transaction(transaction_id)
    subledger.assert_reversible(txn, now=now)
    document = find_document(txn, lock=True)
    _assert_document_correctable(document)
    if isinstance(document, FeePayment) and document.refunds.exists():
        raise PreconditionFailedError(
            f"Payment {document.receipt_number} has refund history and cannot be deleted.",
            details={"payment_id": document.pk},
        )

    entry = txn.journal_entry
    entry_number = entry.entry_number
    before = {
        "transaction": {
            "id": txn.pk,
            "student": txn.student_id,
            "type": txn.type,
            "amount": txn.amount,
        },
        "entry": entry_snapshot(entry),
        "document": document.snapshot() if document else None,
    }

    if document is not None:
        if isinstance(document, PaymentRefund):
            _release_refund(document)
        with command_writes_allowed():
            document.delete()

    student_delta = subledger.remove(txn)
    deltas = journal_store.delete(entry.pk)
    account_balance_projection.apply_deltas(deltas)

    emit_audit(
        "posting.deleted",
        _audit_entity(document) if document else "StudentTransaction",
        before["document"]["id"] if document else before["transaction"]["id"],
        actor.actor_id,
        before=before,
    )
    logger.info(f"Deleted posting {entry_number} (transaction {transaction_id})")
    return {
        "deleted_entry": entry_number,
        "deleted_document": f"{_audit_entity(document)}#{before['document']['id']}" if document else None,
        "student_delta": student_delta,
        "balance_deltas": len(deltas),
    }
