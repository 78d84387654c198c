"""Hosts: progress reporting and interactive gating for the engine.

The engine never prints or prompts directly.  It talks to a ``Host``:

- ``NullHost`` -- silent, approves every confirmation (unattended runs).
- ``ConsoleHost`` -- routes messages through ``logging`` and asks yes/no
  questions on the terminal.
- ``ReportingHost`` -- wraps another host and fans every error out to a
  ``Notifier`` (e.g. ``WebhookNotifier``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

import requests

logger = logging.getLogger(__name__)


class Host(Protocol):
    """Sink for engine progress and operator confirmation."""

    def confirm_checkin(self, shelveset_name: str) -> bool: ...

    def verbose(self, fmt: str, *args: Any) -> None: ...

    def status(self, fmt: str, *args: Any) -> None: ...

    def error(self, fmt: str, *args: Any) -> None: ...


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class NullHost:
    """Auto-approving host that discards all output."""

    def confirm_checkin(self, shelveset_name: str) -> bool:
        return True

    def verbose(self, fmt: str, *args: Any) -> None:
        pass

    def status(self, fmt: str, *args: Any) -> None:
        pass

    def error(self, fmt: str, *args: Any) -> None:
        pass


class ConsoleHost:
    """Logging-backed host with an interactive confirmation prompt.

    Args:
        verbose: Emit ``verbose()`` messages (at INFO) instead of DEBUG.
        input_func: Prompt function; ``input`` by default.
    """

    def __init__(
        self,
        verbose: bool = False,
        input_func: Callable[[str], str] = input,
    ) -> None:
        self.verbose_enabled = verbose
        self._input = input_func

    def confirm_checkin(self, shelveset_name: str) -> bool:
        """Ask until the operator answers yes or no.

        End of input counts as "no".
        """
        prompt = f"Changes shelved as '{shelveset_name}'. Check in? [y/n] "
        while True:
            try:
                answer = self._input(prompt).strip().lower()
            except EOFError:
                logger.warning("No answer for %s; declining checkin", shelveset_name)
                return False
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False

    def verbose(self, fmt: str, *args: Any) -> None:
        level = logging.INFO if self.verbose_enabled else logging.DEBUG
        logger.log(level, fmt, *args)

    def status(self, fmt: str, *args: Any) -> None:
        logger.info(fmt, *args)

    def error(self, fmt: str, *args: Any) -> None:
        logger.error("Error!!! " + fmt, *args)


class ReportingHost:
    """Delegate to *inner* and forward every error to *notifier*."""

    def __init__(self, inner: Host, notifier: Notifier) -> None:
        self.inner = inner
        self.notifier = notifier

    def confirm_checkin(self, shelveset_name: str) -> bool:
        return self.inner.confirm_checkin(shelveset_name)

    def verbose(self, fmt: str, *args: Any) -> None:
        self.inner.verbose(fmt, *args)

    def status(self, fmt: str, *args: Any) -> None:
        self.inner.status(fmt, *args)

    def error(self, fmt: str, *args: Any) -> None:
        self.inner.error(fmt, *args)
        self.notifier.notify(fmt % args if args else fmt)


class WebhookNotifier:
    """Post error messages as JSON to an operator webhook.

    Delivery failures are logged and never raised, so a broken webhook
    cannot mask the error being reported.

    Args:
        url: Endpoint receiving ``{"source": ..., "message": ...}``.
        source: Identifies this mirror in notifications.
        timeout: Connect/read timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        source: str = "vcs-mirror",
        timeout: tuple[int, int] = (10, 30),
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.source = source
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, message: str) -> None:
        try:
            response = self.session.post(
                self.url,
                json={"source": self.source, "message": message},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to deliver notification to %s: %s", self.url, exc)
