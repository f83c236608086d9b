"""
Bulk verification email dispatch.

Recipients are processed in send order. Every non-anchor following a
TEST- anchor becomes that anchor's batch mate. Real mail only goes to
anchors; everyone else gets a simulated send.
"""
import logging
import secrets
import time
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from config import settings
from auth.email_service import build_verification_email, build_verification_link
from auth.password import generate_token
from services.verification_store import AttributeStore, BatchRelationshipStore

logger = logging.getLogger(__name__)


def build_batch_relationships(hash_ids: List[str], prefix: Optional[str] = None) -> Dict[str, List[str]]:
    """
    Group send order into anchor -> mates.
    Recipients before the first anchor belong to no batch.
    """
    prefix = prefix or settings.TEST_ACCOUNT_PREFIX
    batches: Dict[str, List[str]] = {}
    current_anchor = None

    for hash_id in hash_ids:
        if hash_id.startswith(prefix):
            current_anchor = hash_id
            batches.setdefault(current_anchor, [])
        elif current_anchor is not None and hash_id not in batches[current_anchor]:
            batches[current_anchor].append(hash_id)

    return {anchor: mates for anchor, mates in batches.items() if mates}


def simulated_message_id() -> str:
    return f"simulated-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


def dispatch_verification_emails(
    db: Session,
    recipients: List[Dict[str, Any]],
    mailer,
    prefix: Optional[str] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Store batch links and attribute snapshots, then send or simulate each email.

    Args:
        db: Database session
        recipients: snake_case recipient dicts (hash_id, email, first_name, ...)
        mailer: open SmtpMailer-like object with send(to, subject, html, text)
        prefix: anchor prefix (defaults to TEST_ACCOUNT_PREFIX)

    Returns:
        {"sent": [...], "failed": [...]} manifest
    """
    prefix = prefix or settings.TEST_ACCOUNT_PREFIX
    attributes = AttributeStore(db)
    relationships = BatchRelationshipStore(db)

    batches = build_batch_relationships([r["hash_id"] for r in recipients], prefix)
    for anchor, mates in batches.items():
        relationships.add_batch(anchor, mates)
        logger.info(f"[EMAIL] Batch {anchor}: {len(mates)} mates")

    results = {"sent": [], "failed": []}

    for recipient in recipients:
        hash_id = recipient["hash_id"]
        email = recipient.get("email")
        verification_link = build_verification_link(hash_id, generate_token(16))

        attributes.upsert(hash_id, recipient)

        is_test_account = hash_id.startswith(prefix)
        if not is_test_account:
            results["sent"].append({
                "hashId": hash_id,
                "email": email,
                "verificationLink": verification_link,
                "messageId": simulated_message_id(),
                "isTestAccount": False,
            })
            continue

        subject, html_content, text_content = build_verification_email(
            hash_id, verification_link, first_name=recipient.get("first_name"),
        )
        try:
            message_id = mailer.send(email, subject, html_content, text_content)
        except Exception as e:
            logger.error(f"[EMAIL] Failed to send verification email to {email}: {e}")
            results["failed"].append({"hashId": hash_id, "email": email, "error": str(e)})
            continue

        results["sent"].append({
            "hashId": hash_id,
            "email": email,
            "verificationLink": verification_link,
            "messageId": message_id,
            "isTestAccount": True,
        })

    return results


def summarize_dispatch(results: Dict[str, List[Dict[str, Any]]]) -> str:
    sent = results["sent"]
    real = sum(1 for entry in sent if entry["isTestAccount"])
    simulated = len(sent) - real
    return f"Processed {len(sent)} emails ({real} real, {simulated} simulated), {len(results['failed'])} failed"
