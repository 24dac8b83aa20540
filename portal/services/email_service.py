"""
Email service for sending transactional emails using Brevo (formerly Sendinblue)
"""
import asyncio
import html
import logging
import re
from typing import Optional, Sequence

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from portal.config import settings
from portal.schemas.records import Booking
from portal.services.projections import format_amount, format_booking_date

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending transactional emails via Brevo"""

    def __init__(self):
        """Initialize Brevo client"""
        if settings.BREVO_API_KEY:
            try:
                configuration = sib_api_v3_sdk.Configuration()
                configuration.api_key['api-key'] = settings.BREVO_API_KEY
                api_client = sib_api_v3_sdk.ApiClient(configuration)
                self.client = sib_api_v3_sdk.TransactionalEmailsApi(api_client)
                self.is_configured = True
            except Exception as e:
                logger.error(f"Failed to initialize Brevo client: {e}")
                self.client = None
                self.is_configured = False
        else:
            self.client = None
            self.is_configured = False
            logger.warning("Brevo API key not configured. Email sending disabled.")

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None
    ) -> bool:
        """
        Send email using Brevo

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text email body (optional)

        Returns:
            True if email sent successfully, False otherwise
        """
        if not self.is_configured:
            logger.warning(f"Email not sent to {to_email}: Brevo not configured")
            return False

        try:
            sender = sib_api_v3_sdk.SendSmtpEmailSender(
                name=settings.EMAIL_FROM_NAME,
                email=settings.EMAIL_FROM
            )
            to = [sib_api_v3_sdk.SendSmtpEmailTo(email=to_email)]

            email = sib_api_v3_sdk.SendSmtpEmail(
                sender=sender,
                to=to,
                subject=subject,
                html_content=html_body,
                text_content=text_body or self._html_to_text(html_body),
                reply_to=sib_api_v3_sdk.SendSmtpEmailReplyTo(
                    email=settings.EMAIL_REPLY_TO
                )
            )

            response = self.client.send_transac_email(email)
            logger.info(f"Email sent successfully to {to_email}. Message ID: {response.message_id}")
            return True

        except ApiException as e:
            logger.error(f"Brevo API error sending email to {to_email}: {e.status} - {e.reason}")
            return False
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {str(e)}")
            return False

    @staticmethod
    def _html_to_text(html_body: str) -> str:
        """Convert HTML to plain text (basic implementation)"""
        text = re.sub(r'<[^>]+>', '', html_body)
        text = html.unescape(text)
        text = re.sub(r'\s+', ' ', text)
        return text.strip()

    def send_new_booking_requests_email(
        self,
        email: str,
        name: str,
        bookings: Sequence[Booking]
    ) -> bool:
        """Tell a consultant about booking requests waiting for a decision"""
        count = len(bookings)
        plural = "s" if count != 1 else ""
        subject = f"{count} new appointment request{plural} - {settings.EMAIL_FROM_NAME}"

        items_html = "\n".join(
            f"<li><strong>{html.escape(b.full_name or b.user_id or 'Client')}</strong> - "
            f"{html.escape(format_booking_date(b))}"
            f"{' at ' + html.escape(b.hour) if b.hour else ''}"
            f"{' (' + html.escape(b.platform) + ')' if b.platform else ''} - "
            f"{html.escape(format_amount(b.amount))}</li>"
            for b in bookings
        )
        items_text = "\n".join(
            f"- {b.full_name or b.user_id or 'Client'}: {format_booking_date(b)}"
            f"{' at ' + b.hour if b.hour else ''} - {format_amount(b.amount)}"
            for b in bookings
        )

        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background-color: #DA79B9; color: white; padding: 20px; text-align: center; border-radius: 5px 5px 0 0; }}
        .content {{ padding: 20px; background-color: #f9f9f9; }}
        .info-box {{ background-color: white; border: 1px solid #ddd; padding: 15px; margin: 20px 0; border-radius: 5px; }}
        .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
        .button {{ background-color: #DA79B9; color: white; padding: 12px 30px; text-decoration: none; display: inline-block; margin: 20px 0; border-radius: 5px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>New Appointment Request{plural}</h1>
        </div>
        <div class="content">
            <h2>Dear {html.escape(name)},</h2>
            <p>You have {count} new appointment request{plural} waiting for your response.</p>
            <div class="info-box">
                <ul>
{items_html}
                </ul>
            </div>
            <a href="{settings.PORTAL_URL}/requests" class="button">Review Requests</a>
        </div>
        <div class="footer">
            <p>{settings.EMAIL_FROM_NAME}</p>
        </div>
    </div>
</body>
</html>
        """

        text_body = f"""
New Appointment Request{plural}

Dear {name},

You have {count} new appointment request{plural} waiting for your response.

{items_text}

Review requests: {settings.PORTAL_URL}/requests

Best regards,
{settings.EMAIL_FROM_NAME}
        """

        return self.send_email(
            to_email=email,
            subject=subject,
            html_body=html_body,
            text_body=text_body
        )


# Create singleton instance
email_service = EmailService()


async def notify_new_booking_requests(email: str, name: str, bookings: Sequence[Booking]) -> bool:
    """
    Outbound notification for a batch of newly observed pending bookings

    The Brevo client is blocking, so the send runs in a worker thread.
    """
    sent = await asyncio.to_thread(email_service.send_new_booking_requests_email, email, name, bookings)
    if sent:
        logger.info(f"Notified {email} about {len(bookings)} new booking request(s)")
    return sent
