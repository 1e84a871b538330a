import sendgrid
from sendgrid.helpers.mail import Mail, Email, To, Content
from typing import Dict, Optional
from config.config import Config
from review_engine.errors import TransientError
from review_engine.utils.logger import get_logger

logger = get_logger(__name__)

BUTTON_STYLE = ("color: white; padding: 14px 28px; text-decoration: none; "
                "border-radius: 4px; display: inline-block;")


class SendGridClient:
    """Wrapper for SendGrid email operations.

    Send errors propagate so the dispatcher's retry policy can classify them.
    """

    def __init__(self):
        self.api_key = Config.SENDGRID_API_KEY
        self.from_email = Config.SENDGRID_FROM_EMAIL
        self.from_name = Config.SENDGRID_FROM_NAME

        if self.api_key:
            self.client = sendgrid.SendGridAPIClient(api_key=self.api_key)
        else:
            self.client = None
            logger.warning("SendGrid API key not configured")

    def send_email(self, to_email: str, subject: str, html_content: str,
                   plain_content: str = None) -> Optional[Dict]:
        """Send email via SendGrid"""
        if not self.client:
            logger.error("SendGrid client not initialized")
            return None

        message = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(to_email),
            subject=subject,
            html_content=Content("text/html", html_content)
        )

        if plain_content:
            message.plain_text_content = Content("text/plain", plain_content)

        response = self.client.send(message)
        if response.status_code >= 400:
            raise TransientError(f"SendGrid returned {response.status_code}", status_code=response.status_code)

        return {
            'status_code': response.status_code,
            'message_id': response.headers.get('X-Message-Id')
        }

    def send_assignment_email(self, to_email: str, count: int, deadline: str) -> Optional[Dict]:
        """Tell a reviewer new reviews are waiting"""
        noun = 'review' if count == 1 else 'reviews'
        link = f"{Config.APP_URL}/dashboard/reviews"
        subject = f"You have {count} new {noun} to complete"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>New Review Assignments</h2>
                <p>You have been assigned <strong>{count}</strong> {noun}.</p>
                <p>Please complete them by <strong>{deadline}</strong>.</p>
                <p style="margin: 30px 0;">
                    <a href="{link}" style="background-color: #4CAF50; {BUTTON_STYLE}">
                        Start Reviewing
                    </a>
                </p>
                <p style="color: #666; font-size: 12px;">
                    Missing the deadline lowers your integrity score.
                </p>
            </body>
        </html>
        """
        plain_content = f"You have {count} new {noun}. Complete them by {deadline}: {link}"

        return self.send_email(to_email, subject, html_content, plain_content)

    def send_deadline_warning_email(self, to_email: str, count: int, deadline: str,
                                    hours_left: int) -> Optional[Dict]:
        """Reminder ahead of a deadline; one email per reviewer covers every pending assignment"""
        noun = 'review is' if count == 1 else 'reviews are'
        link = f"{Config.APP_URL}/dashboard/reviews"
        subject = f"Reminder: {count} {noun} due in {hours_left} hours"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Review Deadline Approaching</h2>
                <p>{count} {noun} due by <strong>{deadline}</strong>.</p>
                <p style="margin: 30px 0;">
                    <a href="{link}" style="background-color: #FF9800; {BUTTON_STYLE}">
                        Finish Reviews
                    </a>
                </p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_disqualification_email(self, to_email: str, completed: int, required: int) -> Optional[Dict]:
        """Notice to a reviewer whose own submission was disqualified"""
        subject = "Your submission has been disqualified"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Submission Disqualified</h2>
                <p>Participation in peer review was required to stay in the contest.</p>
                <p>You completed {completed} of {required} required reviews.</p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_results_email(self, to_email: str, submission_code: str, overall: float,
                           rank: int = None) -> Optional[Dict]:
        """Peer review results for an author"""
        link = f"{Config.APP_URL}/dashboard/submissions"
        rank_line = f"<p>Rank: <strong>{rank}</strong></p>" if rank else ""
        subject = f"Peer review results for {submission_code}"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Your Peer Review Results</h2>
                <p>Overall score: <strong>{overall:.2f}</strong> / 5</p>
                {rank_line}
                <p style="margin: 30px 0;">
                    <a href="{link}" style="background-color: #2196F3; {BUTTON_STYLE}">
                        View Details
                    </a>
                </p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_finalist_email(self, to_email: str, submission_code: str) -> Optional[Dict]:
        subject = f"{submission_code} is a finalist"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Congratulations!</h2>
                <p>Your submission {submission_code} advances to public voting.</p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)

    def send_verification_result_email(self, to_email: str, submission_code: str, outcome: str,
                                       reinstate_percentage: float = None,
                                       refunded: bool = False, admin_override: bool = False) -> Optional[Dict]:
        """Outcome of a paid peer verification"""
        messages = {
            'REINSTATED': "Peer reviewers voted to reinstate your submission. It is back in the contest.",
            'ELIMINATED_CONFIRMED': "Peer reviewers agreed with the original elimination.",
            'AI_DECISION_UPHELD': "Peer reviewers did not reach a clear majority, so the original decision stands.",
            'INCOMPLETE': "Not enough reviewers completed the verification in time.",
        }
        refund_line = "<p>Your verification fee has been refunded.</p>" if refunded else ""
        votes_line = (f"<p>{reinstate_percentage:.0f}% of reviewers voted to reinstate.</p>"
                      if reinstate_percentage is not None else "")
        override_line = ('<p>This decision was made by a contest administrator after review.</p>'
                         if admin_override else "")
        subject = f"Peer verification result for {submission_code}"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>Peer Verification Complete</h2>
                <p>{messages.get(outcome, outcome)}</p>
                {override_line}
                {votes_line}
                {refund_line}
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)
