from __future__ import annotations

import logging
import socket
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from pixelpilot.constants import DEFAULT_PREFLIGHT_TIMEOUT_SECONDS
from pixelpilot.schemas import PreflightReason, Scenario, ValidationVerdict
from pixelpilot.services.progress import EventType, ProgressChannel, get_progress_channel

LOGGER = logging.getLogger("pixelpilot.preflight")

USER_AGENT = "PixelPilot-BackstopJS-Validator/1.0"

_SEVERITY = {
    PreflightReason.no_url: "high",
    PreflightReason.invalid_url: "high",
    PreflightReason.connection_refused: "high",
    PreflightReason.dns_failure: "high",
    PreflightReason.timeout: "medium",
    PreflightReason.connection_reset: "medium",
    PreflightReason.network_error: "high",
    PreflightReason.client_error: "high",
    PreflightReason.server_error: "high",
}


class ProbeFailure(Exception):
    def __init__(self, reason: PreflightReason, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code


def _classify_transport(exc: BaseException) -> ProbeFailure:
    if isinstance(exc, ConnectionRefusedError):
        return ProbeFailure(PreflightReason.connection_refused, "Connection refused - server not responding")
    if isinstance(exc, socket.gaierror):
        return ProbeFailure(PreflightReason.dns_failure, "DNS resolution failed - domain not found")
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return ProbeFailure(PreflightReason.timeout, "Request timeout - server not responding in time")
    if isinstance(exc, ConnectionResetError):
        return ProbeFailure(PreflightReason.connection_reset, "Connection reset by server")
    return ProbeFailure(PreflightReason.network_error, f"Network error: {exc}")


def _classify_status(status: int, phrase: str = "") -> Optional[ProbeFailure]:
    if 200 <= status < 400:
        return None
    detail = f"{status} {phrase}".strip()
    if 400 <= status < 500:
        return ProbeFailure(PreflightReason.client_error, f"Client error: {detail}", status)
    if status >= 500:
        return ProbeFailure(PreflightReason.server_error, f"Server error: {detail}", status)
    return ProbeFailure(PreflightReason.network_error, f"Network error: unexpected status {detail}", status)


class PreflightValidator:
    """Probe scenario URLs before the engine is launched.

    Every scenario is probed even when a filter is active so that broken
    scenarios outside the filter are still reported. A probe is one HTTP GET
    bounded by ``timeout``; redirects are followed by urllib.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_PREFLIGHT_TIMEOUT_SECONDS,
        channel: Optional[ProgressChannel] = None,
    ) -> None:
        self._timeout = timeout
        self._channel = channel or get_progress_channel()

    @property
    def timeout(self) -> float:
        return self._timeout

    def probe(self, url: Optional[str]) -> Tuple[int, Optional[ProbeFailure]]:
        """Return ``(status_code, failure)``; ``failure`` is None for a reachable URL."""
        if not url or not url.strip():
            return 0, ProbeFailure(PreflightReason.no_url, "No URL provided for this scenario")
        parsed = urlparse(url.strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            return 0, ProbeFailure(PreflightReason.invalid_url, f"Invalid URL format: {url}")

        request = urllib.request.Request(url.strip(), headers={"User-Agent": USER_AGENT}, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                status = int(getattr(response, "status", 200))
                return status, _classify_status(status, getattr(response, "reason", "") or "")
        except urllib.error.HTTPError as exc:
            return exc.code, _classify_status(exc.code, str(exc.reason or ""))
        except urllib.error.URLError as exc:
            cause = exc.reason if isinstance(exc.reason, BaseException) else exc
            return 0, _classify_transport(cause)
        except ValueError as exc:
            return 0, ProbeFailure(PreflightReason.invalid_url, f"Invalid URL format: {exc}")
        except OSError as exc:
            return 0, _classify_transport(exc)

    def validate_scenario(self, scenario: Scenario, filter_labels: Optional[Sequence[str]] = None) -> ValidationVerdict:
        matched = None if filter_labels is None else scenario.label in filter_labels
        status, failure = self.probe(scenario.url)
        if failure is None and scenario.reference_url and scenario.reference_url != scenario.url:
            _, ref_failure = self.probe(scenario.reference_url)
            if ref_failure is not None:
                failure = ProbeFailure(
                    ref_failure.reason,
                    f"Reference URL: {ref_failure.message}",
                    ref_failure.status_code,
                )
        if failure is None:
            LOGGER.debug("Scenario %s reachable (%s)", scenario.label, status)
            return ValidationVerdict(
                scenario=scenario,
                valid=True,
                message=f"URL accessible ({status})",
                status_code=status or None,
                matched_filter=matched,
            )
        LOGGER.warning("Scenario %s failed preflight: %s - %s", scenario.label, failure.reason.value, failure.message)
        return ValidationVerdict(
            scenario=scenario,
            valid=False,
            reason=failure.reason,
            message=failure.message,
            severity=_SEVERITY[failure.reason],
            status_code=failure.status_code,
            matched_filter=matched,
        )

    def validate(
        self,
        scenarios: Sequence[Scenario],
        filter_labels: Optional[Sequence[str]] = None,
        *,
        project_id: Optional[str] = None,
    ) -> List[ValidationVerdict]:
        verdicts: List[ValidationVerdict] = []
        total = len(scenarios)
        for index, scenario in enumerate(scenarios):
            self._channel.emit(
                EventType.test_progress,
                project_id,
                status="validating",
                percent=round(5 + (index / max(total, 1)) * 15, 1),
                message=f"Validating URLs... ({index + 1}/{total}) {scenario.label}",
            )
            verdict = self.validate_scenario(scenario, filter_labels)
            verdicts.append(verdict)
            if not verdict.valid:
                self._channel.emit(
                    EventType.test_warning,
                    project_id,
                    scenario=scenario.label,
                    type=verdict.reason.value,
                    category=verdict.reason.category,
                    message=verdict.message,
                    severity=verdict.severity,
                    matchedFilter=verdict.matched_filter,
                    timestamp=datetime.now(tz=timezone.utc).isoformat(),
                )
        LOGGER.info(
            "Preflight finished: %s valid, %s invalid",
            sum(1 for item in verdicts if item.valid),
            sum(1 for item in verdicts if not item.valid),
        )
        return verdicts


def partition(
    verdicts: Sequence[ValidationVerdict],
    filter_labels: Optional[Sequence[str]] = None,
) -> Tuple[List[Scenario], List[ValidationVerdict]]:
    """Split verdicts into the scenarios the engine should run and the invalid verdicts.

    Invalid verdicts are returned regardless of the filter; only valid scenarios
    are narrowed to the filter.
    """
    runnable = [
        item.scenario
        for item in verdicts
        if item.valid and (filter_labels is None or item.label in filter_labels)
    ]
    invalid = [item for item in verdicts if not item.valid]
    return runnable, invalid
