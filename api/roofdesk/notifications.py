import logging
from html import escape

from sqlmodel import Session, select

from .enums import Role
from .email import format_sender_name, send_email
from .models import AcceptanceRecord, User
from .tokens import public_url

logger = logging.getLogger(__name__)

KIND_LABELS = {
    "offer": "offer",
    "service-agreement": "service agreement",
}


def send_document_link(document, token: str, requester_name: str | None = None, reply_to: str | None = None):
    label = KIND_LABELS[document.KIND.value]
    link = public_url(document.KIND, token)
    sender = requester_name or document.created_by_name or "Your contact"
    subject = f"Please review your {label}: {document.title}"
    expires = document.expires_at.strftime("%Y-%m-%d") if document.expires_at else None
    text_body = f"""{sender} sent you an {label} to review.
Title: “{document.title}”
{f"Valid until: {expires}" if expires else ""}

Open {label}: {link}
"""
    link_html = escape(link)
    html_body = f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px;">
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">{escape(document.title)}</h2>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">
        {escape(sender)} sent you an {label} to review.
      </p>
      <div style="margin: 24px 0;">
        <a href="{link_html}" style="display: inline-block; background: #2563eb; color: #fff; padding: 12px 24px; border-radius: 999px; text-decoration: none; font-weight: 600;">
          Review {label}
        </a>
      </div>
      <p style="font-size: 12px; color: #64748b;">If the button doesn&apos;t work, copy this link into your browser:<br /><a href="{link_html}">{link_html}</a></p>
    </div>
  </body>
</html>
"""
    send_email(
        document.recipient_email,
        subject,
        text_body,
        html_body=html_body,
        sender_name=format_sender_name(requester_name),
        reply_to=reply_to,
    )


def notify_response(session: Session, document, entry: AcceptanceRecord) -> bool:
    creator = session.get(User, document.created_by) if document.created_by else None
    if creator is None or not creator.email:
        logger.info("no creator email for %s %s; skipping response notice", document.KIND.value, document.id)
        return False
    label = KIND_LABELS[document.KIND.value]
    subject = f"{label.capitalize()} {entry.outcome}: {document.title}"
    body = f"{entry.actor_name} <{entry.actor_email}> {entry.outcome} the {label} “{document.title}”."
    if entry.reason:
        body += f"\n\nReason given:\n{entry.reason}"
    send_email(creator.email, subject, body, reply_to=entry.actor_email)
    return True


def notify_follow_up(session: Session, document, days_pending: int) -> bool:
    creator = session.get(User, document.created_by) if document.created_by else None
    if creator is None or not creator.email:
        logger.info("no creator email for %s %s; skipping follow-up reminder", document.KIND.value, document.id)
        return False
    label = KIND_LABELS[document.KIND.value]
    subject = f"Follow up: {label} “{document.title}” is still open"
    body = (
        f"The {label} “{document.title}” sent to {document.recipient_name} <{document.recipient_email}> "
        f"has been waiting for {days_pending} days. Please follow up with the customer."
    )
    send_email(creator.email, subject, body, reply_to=document.recipient_email)
    return True


def notify_escalation(session: Session, document, days_pending: int) -> bool:
    admin = session.exec(
        select(User)
        .where(User.branch_id == document.branch_id, User.role == Role.BRANCH_ADMIN.value)
        .order_by(User.created_at)
    ).first()
    if admin is None or not admin.email:
        logger.warning("no branch admin for branch %s; %s %s not escalated", document.branch_id, document.KIND.value, document.id)
        return False
    label = KIND_LABELS[document.KIND.value]
    subject = f"Escalation: {label} “{document.title}” unanswered for {days_pending} days"
    body = (
        f"The {label} “{document.title}” for {document.recipient_name} <{document.recipient_email}> "
        f"has had no response for {days_pending} days and needs your attention."
    )
    send_email(admin.email, subject, body)
    return True
