"""Sign-in link generation and welcome email delivery."""

from __future__ import annotations

import html
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from personacore.config import HTTP_TIMEOUT, RESEND_API_URL
from personacore.errors import NotificationError, StoreError
from personacore.schema import mask_email
from personacore.store import LinkIssuer, Mailer

logger = logging.getLogger("personacore.notifier")

_WELCOME_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #667eea;">Welcome to PersonaCore!</h2>
  <p>You've successfully subscribed to chat with <strong>{creator}</strong>.</p>
  <div style="background: #f5f5f7; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <p style="margin: 0;"><strong>Your username:</strong> {username}</p>
    <p style="margin: 5px 0 0 0; font-size: 0.9em; color: #666;">You can change this anytime in your settings</p>
  </div>
  <p>Click the button below to start chatting:</p>
  <div style="text-align: center; margin: 30px 0;">
    <a href="{link}" style="display: inline-block; padding: 14px 28px; background: #667eea; color: white; text-decoration: none; border-radius: 25px; font-weight: 600;">Start Chatting with {creator}</a>
  </div>
  <p style="color: #666; font-size: 0.9em;">Or copy this link: {link}</p>
  <p style="color: #999; font-size: 0.85em;">This link will expire in 24 hours.</p>
</div>
"""  # noqa: E501


def build_redirect_url(app_base_url: str, creator_slug: str) -> str:
    """Chat entry point the sign-in link lands on, scoped to the creator."""
    return f"{app_base_url.rstrip('/')}/chat?creator={quote(creator_slug, safe='')}"


def render_welcome_email(creator_name: str, username: str, link: str) -> tuple[str, str]:
    """Return ``(subject, html_body)`` for the post-checkout welcome email."""
    subject = f"Welcome to PersonaCore - Chat with {creator_name}"
    body = _WELCOME_TEMPLATE.format(
        creator=html.escape(creator_name),
        username=html.escape(username),
        link=html.escape(link, quote=True),
    )
    return subject, body


class ResendMailer:
    """``Mailer`` posting to the Resend email API."""

    def __init__(self, api_key: str, sender: str, api_url: str = RESEND_API_URL):
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY is not configured", stage="email")

        data = json.dumps({"from": self.sender, "to": to, "subject": subject, "html": html})
        req = Request(
            self.api_url,
            data=data.encode(),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=HTTP_TIMEOUT) as resp:  # noqa: S310
                resp.read()
        except HTTPError as e:
            error_body = e.read().decode(errors="replace") if e.fp else str(e)
            raise NotificationError(
                f"Email API returned {e.code}: {error_body}", stage="email"
            ) from e
        except (URLError, OSError) as e:
            raise NotificationError(f"Email API unreachable: {e}", stage="email") from e


def notify(
    issuer: LinkIssuer,
    mailer: Mailer,
    *,
    email: str,
    username: str,
    creator_name: str,
    redirect_url: str,
) -> str:
    """Generate a one-time sign-in link and email it. Returns the link.

    Raises ``NotificationError`` with ``stage`` "link" or "email".
    """
    try:
        link = issuer.generate_magic_link(email, redirect_url)
    except StoreError as e:
        raise NotificationError(f"Magic link generation failed: {e}", stage="link") from e

    subject, body = render_welcome_email(creator_name, username, link)
    try:
        mailer.send(email, subject, body)
    except NotificationError:
        raise
    except Exception as e:
        raise NotificationError(f"Email dispatch failed: {e}", stage="email") from e

    logger.info("Magic link email sent to %s", mask_email(email))
    return link
