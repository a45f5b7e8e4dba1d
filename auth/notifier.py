"""
auth/notifier.py -- Out-of-band delivery of email verification codes.

The session manager treats the notifier as optional: signup and resend still
succeed when no notifier is configured or when delivery fails. Delivery
mechanics (SMTP, transactional email APIs) are deployment concerns; anything
with a send_verification_code(email, code) -> bool method plugs in.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("anivault.auth.notifier")


class Notifier(Protocol):
    def send_verification_code(self, email: str, code: str) -> bool:
        """Deliver code to email. Return False (or raise) on failure."""
        ...


class LoggingNotifier:
    """Writes verification codes to the application log.

    Intended for local development, where no mail transport exists.
    """

    def send_verification_code(self, email: str, code: str) -> bool:
        logger.info("Verification code for %s: %s", email, code)
        return True
