"""Alert delivery with per-kind cooldowns for quota notices."""

import asyncio
import logging
import smtplib
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import structlog

from ..config import AlertConfig
from ..exceptions import AlertDeliveryFailed
from ..models import AlertKind, UsageSnapshot
from ..tenants import read_contact_email
from ..utils.flatfile import read_int, write_int
from .metrics import QuotaMetrics

logger = logging.getLogger(__name__)


@dataclass
class AlertMessage:
    """A rendered alert ready for delivery."""

    tenant: str
    kind: AlertKind
    subject: str
    body: str
    recipients: List[str]
    snapshot: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant": self.tenant,
            "kind": self.kind.value,
            "subject": self.subject,
            "body": self.body,
            "recipients": self.recipients,
            "snapshot": self.snapshot,
            "created_at": self.created_at.isoformat(),
        }


class AlertNotifier:
    """Base class for alert notification channels."""

    name = "base"
    # Channels that actually reach a person; the log channel does not.
    delivers = True

    async def send(self, message: AlertMessage) -> bool:
        """Send alert notification. Returns True if successful."""
        raise NotImplementedError


class LogNotifier(AlertNotifier):
    """Writes alerts to the structured log."""

    name = "log"
    delivers = False

    def __init__(self):
        self.logger = structlog.get_logger("alerts")

    async def send(self, message: AlertMessage) -> bool:
        self.logger.warning(
            "Alert issued",
            tenant=message.tenant,
            kind=message.kind.value,
            subject=message.subject,
            recipients=message.recipients,
            event_type="alert_issued"
        )
        return True


class SmtpNotifier(AlertNotifier):
    """Sends alerts as plain-text email."""

    name = "smtp"

    def __init__(self, config: AlertConfig):
        self.config = config

    def _build(self, message: AlertMessage) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = message.subject
        email["From"] = self.config.sender
        email["To"] = ", ".join(message.recipients)
        email.set_content(message.body)
        return email

    def _send_sync(self, email: EmailMessage) -> None:
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as smtp:
            if self.config.smtp_starttls:
                smtp.starttls()
            if self.config.smtp_user:
                smtp.login(self.config.smtp_user, self.config.smtp_password or "")
            smtp.send_message(email)

    async def send(self, message: AlertMessage) -> bool:
        if not message.recipients:
            raise AlertDeliveryFailed("No recipients configured", channel=self.name)
        try:
            await asyncio.to_thread(self._send_sync, self._build(message))
        except (smtplib.SMTPException, OSError) as e:
            raise AlertDeliveryFailed(f"SMTP delivery failed: {e}", channel=self.name) from e
        return True


class WebhookNotifier(AlertNotifier):
    """Posts alerts to a webhook endpoint."""

    name = "webhook"

    def __init__(self, webhook_url: str, timeout: float = 30.0,
                 client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client_factory = client_factory

    async def send(self, message: AlertMessage) -> bool:
        payload = {
            "event": f"quota.{message.kind.value}",
            "alert": message.to_dict(),
            "timestamp": datetime.now().isoformat(),
        }
        try:
            async with self._client_factory() as client:
                response = await client.post(self.webhook_url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise AlertDeliveryFailed(f"Webhook delivery failed: {e}", channel=self.name) from e

        if response.status_code >= 300:
            raise AlertDeliveryFailed(
                f"Webhook returned HTTP {response.status_code}", channel=self.name
            )
        return True


class CooldownCache:
    """Per (tenant, alert kind) timestamps of the last successful send.

    Records are one file per key, ``{tenant}.{kind}``, holding epoch seconds.
    Check and mark happen under one lock per key, and the mark is written only
    after a successful send, so concurrent passes cannot both send and a failed
    send stays retry-eligible.
    """

    def __init__(self, directory: Path, cooldowns: Dict[str, int],
                 clock: Callable[[], float] = time.time, name: str = "dispatch"):
        self.directory = Path(directory)
        self.cooldowns = dict(cooldowns)
        self.clock = clock
        self.name = name
        self._locks: Dict[str, asyncio.Lock] = {}

    def _key(self, tenant: str, kind: AlertKind) -> str:
        return f"{tenant}.{kind.value}"

    def _path(self, tenant: str, kind: AlertKind) -> Path:
        return self.directory / self._key(tenant, kind)

    def _lock(self, tenant: str, kind: AlertKind) -> asyncio.Lock:
        key = self._key(tenant, kind)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def cooldown_for(self, kind: AlertKind) -> int:
        return self.cooldowns.get(kind.value, 0)

    def last_sent(self, tenant: str, kind: AlertKind) -> Optional[int]:
        return read_int(self._path(tenant, kind))

    def in_cooldown(self, tenant: str, kind: AlertKind) -> bool:
        window = self.cooldown_for(kind)
        if window <= 0:
            return False
        last = self.last_sent(tenant, kind)
        if last is None:
            return False
        return self.clock() - last < window

    def mark(self, tenant: str, kind: AlertKind) -> None:
        write_int(self._path(tenant, kind), int(self.clock()))

    async def run_once(self, tenant: str, kind: AlertKind,
                       action: Callable[[], Awaitable[bool]]) -> Optional[bool]:
        """Run ``action`` unless in cooldown.

        Returns None when suppressed, otherwise the action's result.
        """
        async with self._lock(tenant, kind):
            if self.in_cooldown(tenant, kind):
                logger.debug(f"{self.name} cooldown active for {tenant}/{kind.value}")
                return None
            sent = await action()
            if sent:
                try:
                    self.mark(tenant, kind)
                except OSError as e:
                    logger.warning(f"Could not record {self.name} cooldown for {tenant}/{kind.value}: {e}")
            return sent

    def clear_tenant(self, tenant: str) -> int:
        """Forget every record for ``tenant``; returns the number removed."""
        removed = 0
        if not self.directory.is_dir():
            return removed
        for path in self.directory.glob(f"{tenant}.*"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def cleanup(self, max_age_seconds: int) -> int:
        """Remove records older than ``max_age_seconds``."""
        removed = 0
        if not self.directory.is_dir():
            return removed
        cutoff = self.clock() - max_age_seconds
        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            stamp = read_int(path)
            if stamp is None or stamp < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        return removed


# Message rendering

RULE = "═" * 59
THIN_RULE = "─" * 59


def _footer() -> str:
    return (
        f"{THIN_RULE}\n"
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"Server: {socket.gethostname()}\n"
    )


def render_threshold_alert(snapshot: UsageSnapshot, kind: AlertKind, config: AlertConfig,
                           cooldown_seconds: int) -> Tuple[str, str]:
    label = kind.value.upper()
    marker = "⚠️" if kind is AlertKind.WARNING else "🚨"
    subject = f"{marker} CDN Quota Alert: {snapshot.tenant} at {snapshot.usage_pct}% ({label})"
    hours = cooldown_seconds // 3600
    portal = f"Portal:        https://{config.portal_domain}\n" if config.portal_domain else ""
    body = (
        f"CDN Quota Alert\n{RULE}\n\n"
        f"{marker} QUOTA {label}\n\n"
        f"Tenant:        {snapshot.tenant}\n"
        f"Usage:         {snapshot.used_mb}MB / {snapshot.quota_mb}MB ({snapshot.usage_pct}%)\n"
        f"Status:        {label}\n\n"
        f"CDN URL:       https://{config.cdn_domain}/{snapshot.tenant}/\n"
        f"{portal}\n"
        f"Action Required:\n{THIN_RULE}\n"
        f"The tenant \"{snapshot.tenant}\" is approaching or has exceeded\n"
        f"their disk quota limit.\n\n"
        f"Recommended actions:\n"
        f"- Review and delete unnecessary files\n"
        f"- Contact administrator to increase quota\n"
        f"- Archive old content\n\n"
        f"Current quota can be increased with:\n"
        f"  sudo cdn-quota quota increase {snapshot.tenant} <MB>\n\n"
        f"Or set new absolute quota:\n"
        f"  sudo cdn-quota quota set {snapshot.tenant} <MB>\n\n"
        f"{_footer()}"
    )
    if hours:
        body += f"\nNote: This alert will not be sent again for {hours} hours unless\nthe status changes.\n"
    return subject, body


def render_enforcement_notice(snapshot: UsageSnapshot, config: AlertConfig) -> Tuple[str, str]:
    subject = f"🚨 URGENT: Your CDN Account is Now READ-ONLY - {snapshot.tenant}"
    body = (
        f"CDN QUOTA ENFORCEMENT NOTICE\n{RULE}\n\n"
        f"🚨 YOUR ACCOUNT IS NOW READ-ONLY\n\n"
        f"Tenant:        {snapshot.tenant}\n"
        f"Usage:         {snapshot.used_mb}MB / {snapshot.quota_mb}MB ({snapshot.usage_pct}%)\n"
        f"Status:        ENFORCED (Read-Only)\n\n"
        f"WHAT HAPPENED?\n{THIN_RULE}\n"
        f"Your account has exceeded its disk quota limit. To prevent\n"
        f"system issues, your upload directory has been made READ-ONLY.\n\n"
        f"CURRENT RESTRICTIONS:\n{THIN_RULE}\n"
        f"  ✗ You CANNOT upload new files\n"
        f"  ✗ You CANNOT modify existing files\n"
        f"  ✓ You CAN read and download files\n"
        f"  ✓ You CAN delete files to free up space\n\n"
        f"HOW TO RESTORE ACCESS:\n{THIN_RULE}\n"
        f"Option 1: Free Up Space\n"
        f"  1. Connect via SFTP: sftp -P {config.sftp_port} cdn_{snapshot.tenant}@{config.cdn_domain}\n"
        f"  2. Delete unnecessary files to reduce usage below {snapshot.quota_mb}MB\n"
        f"  3. Contact administrator to verify and restore access\n\n"
        f"Option 2: Request Quota Increase\n"
        f"  Contact your system administrator at: {config.admin_email}\n\n"
        f"No data has been deleted. Existing files are still served.\n\n"
        f"{_footer()}"
    )
    return subject, body


def render_restoration_notice(snapshot: UsageSnapshot, config: AlertConfig) -> Tuple[str, str]:
    subject = f"✓ CDN Account Access Restored - {snapshot.tenant}"
    body = (
        f"CDN QUOTA ENFORCEMENT REMOVED\n{RULE}\n\n"
        f"✓ YOUR ACCOUNT ACCESS HAS BEEN RESTORED\n\n"
        f"Tenant:        {snapshot.tenant}\n"
        f"Usage:         {snapshot.used_mb}MB / {snapshot.quota_mb}MB ({snapshot.usage_pct}%)\n"
        f"Status:        ACTIVE (Read-Write)\n\n"
        f"CURRENT STATUS:\n{THIN_RULE}\n"
        f"  Current Usage:  {snapshot.used_mb}MB\n"
        f"  Quota Limit:    {snapshot.quota_mb}MB\n"
        f"  Free Space:     {snapshot.free_mb}MB\n\n"
        f"RECOMMENDATIONS:\n{THIN_RULE}\n"
        f"- Delete old or unnecessary files periodically\n"
        f"- Keep usage below 80% to avoid future restrictions\n"
        f"- Contact administrator if you need more space\n\n"
        f"{_footer()}"
    )
    return subject, body


class AlertDispatcher:
    """Addresses, renders and delivers threshold and enforcement alerts."""

    def __init__(self, config: AlertConfig, tenants_dir: Path, cooldowns: CooldownCache,
                 notifiers: Optional[List[AlertNotifier]] = None,
                 metrics: Optional[QuotaMetrics] = None):
        self.config = config
        self.tenants_dir = Path(tenants_dir)
        self.cooldowns = cooldowns
        self.notifiers = notifiers if notifiers is not None else build_notifiers(config)
        self.metrics = metrics
        self.logger = structlog.get_logger("alert_dispatcher")

    def contact_email(self, tenant: str) -> Optional[str]:
        return read_contact_email(self.tenants_dir, tenant)

    def recipients(self, tenant: str) -> List[str]:
        recipients = []
        contact = self.contact_email(tenant)
        if contact:
            recipients.append(contact)
        if self.config.admin_email and self.config.admin_email not in recipients:
            recipients.append(self.config.admin_email)
        return recipients

    async def send_threshold_alert(self, snapshot: UsageSnapshot) -> Optional[bool]:
        """Send a WARNING/CRITICAL/OVER alert; None when level is OK or suppressed."""
        kind = AlertKind.for_level(snapshot.level)
        if kind is None:
            return None
        subject, body = render_threshold_alert(
            snapshot, kind, self.config, self.cooldowns.cooldown_for(kind)
        )
        return await self._dispatch(snapshot, kind, subject, body)

    async def send_enforcement_alert(self, snapshot: UsageSnapshot, kind: AlertKind) -> Optional[bool]:
        if kind is AlertKind.ENFORCED:
            subject, body = render_enforcement_notice(snapshot, self.config)
        elif kind is AlertKind.RESTORED:
            subject, body = render_restoration_notice(snapshot, self.config)
        else:
            raise ValueError(f"{kind} is not an enforcement alert")
        return await self._dispatch(snapshot, kind, subject, body)

    async def _dispatch(self, snapshot: UsageSnapshot, kind: AlertKind,
                        subject: str, body: str) -> Optional[bool]:
        message = AlertMessage(
            tenant=snapshot.tenant,
            kind=kind,
            subject=subject,
            body=body,
            recipients=self.recipients(snapshot.tenant),
            snapshot=snapshot.to_dict(),
        )

        result = await self.cooldowns.run_once(snapshot.tenant, kind, lambda: self._deliver(message))

        status = "suppressed" if result is None else ("sent" if result else "failed")
        if self.metrics:
            self.metrics.record_alert(snapshot.tenant, kind.value, status)
        if result is False:
            self.logger.warning("Alert delivery failed", tenant=snapshot.tenant, kind=kind.value)
        return result

    async def _deliver(self, message: AlertMessage) -> bool:
        """Deliver through every notifier; delivery errors are logged, never raised."""
        delivering = [n for n in self.notifiers if n.delivers]
        delivered = False
        logged = False

        for notifier in self.notifiers:
            try:
                ok = await notifier.send(message)
            except AlertDeliveryFailed as e:
                self.logger.warning("Notifier failed", channel=e.channel or notifier.name, error=str(e))
                continue
            except Exception as e:
                self.logger.warning("Notifier raised", channel=notifier.name, error=str(e))
                continue
            if notifier.delivers:
                delivered = delivered or ok
            else:
                logged = logged or ok

        return delivered if delivering else logged


def build_notifiers(config: AlertConfig) -> List[AlertNotifier]:
    """Initialize notifiers from configuration; the log notifier is always present."""
    notifiers: List[AlertNotifier] = [LogNotifier()]
    if config.smtp_enabled:
        notifiers.append(SmtpNotifier(config))
    if config.webhook_url:
        notifiers.append(WebhookNotifier(config.webhook_url, config.webhook_timeout))
    return notifiers
