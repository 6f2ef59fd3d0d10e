"""
auth/mailer.py -- Best-effort outbound email for verification links.

Two modes:
  sendgrid -- POST to the SendGrid v3 mail/send endpoint when an API key is
              configured.
  console  -- no API key: the message is logged instead of sent. Useful for
              local development and tests.

Delivery is fire-and-forget. send() hands the message to a small worker pool
and returns immediately; a delivery failure is logged and never reaches the
request that triggered it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

import requests

logger = logging.getLogger("contactsauth.mailer")

SENDGRID_API = "https://api.sendgrid.com/v3/mail/send"


class Mailer:
    def __init__(self, api_key: str, sender: str, base_url: str, max_workers: int = 2) -> None:
        self._api_key = api_key
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._session = requests.Session()
        self._session.max_redirects = 3
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mailer")

    @property
    def mode(self) -> str:
        return "sendgrid" if self._api_key else "console"

    def verification_link(self, token: str) -> str:
        return f"{self._base_url}/api/v1/users/verify/{token}"

    def send_verification_email(self, to: str, token: str) -> Future:
        """Queue the confirmation email carrying the verification link."""
        link = self.verification_link(token)
        html = f'<a target="_blank" href="{link}">Click here to verify your email</a>'
        return self.send(to, "Verify your email", html)

    def send(self, to: str, subject: str, html: str) -> Future:
        """Queue a message for delivery and return without waiting."""
        return self._pool.submit(self._deliver, to, subject, html)

    def _deliver(self, to: str, subject: str, html: str) -> bool:
        if not self._api_key:
            logger.info("Mail (console mode) to=%s subject=%r body=%s", to, subject, html)
            return True
        body = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self._sender},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        try:
            resp = self._session.post(
                SENDGRID_API,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Mail delivery to %s failed: %s", to, e)
            return False
        logger.info("Mail sent to %s", to)
        return True

    def close(self) -> None:
        self._pool.shutdown(wait=True)
        self._session.close()
