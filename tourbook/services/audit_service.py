import uuid, json
from sqlalchemy.orm import Session
from tourbook.models.audit_log import AuditLog
from tourbook.models.payment_attempt import PaymentAttemptRecord
from tourbook.services.paystack_gateway import PaymentAttempt

def log_audit(db: Session, actor: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def record_attempt(db: Session, session_id: str, tour_id: str, attempt: PaymentAttempt) -> PaymentAttemptRecord:
    """Mirror the gateway attempt into the ledger. Idempotent per reference."""
    row = db.get(PaymentAttemptRecord, attempt.reference)
    if not row:
        row = PaymentAttemptRecord(
            reference=attempt.reference,
            session_id=session_id,
            tour_id=tour_id,
            email=attempt.email,
            amount=attempt.amount,
            currency=attempt.currency,
        )
        db.add(row)
    row.state = attempt.state.value
    row.error = (attempt.error or "")[:500]
    if attempt.verification:
        row.verification_status = attempt.verification.status.value
    return row

def link_booking(db: Session, reference: str, booking_ref: str) -> None:
    row = db.get(PaymentAttemptRecord, reference)
    if row:
        row.booking_ref = booking_ref
