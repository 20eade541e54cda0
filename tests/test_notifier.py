"""Tests for subscriber notifications and e-mail templates."""

import asyncio

import pytest

from release_registry.core.notifier import NotificationEvent, SubscriberNotifier
from release_registry.db.services import PackageService, SubscriptionService
from release_registry.notifications.email import (
    EmailChannel,
    LoggingEmailChannel,
    SmtpEmailChannel,
    new_version_email,
    package_discontinued_email,
    version_discontinued_email,
)

from conftest import RecordingEmailChannel

PKG = "com.acme.lib"


@pytest.fixture
def subscribed(db_session):
    PackageService(db_session).create(PKG, "alice", "Acme Lib")
    subscriptions = SubscriptionService(db_session)
    subscriptions.subscribe("carol", PKG, "carol@example.com")
    subscriptions.subscribe("erin", PKG, "erin@example.com")
    return ["carol@example.com", "erin@example.com"]


class TestSubscriberNotifier:
    @pytest.mark.asyncio
    async def test_one_message_per_subscriber(self, notifier, channel, subscribed):
        report = await notifier.notify(
            PKG, NotificationEvent.NEW_VERSION, "1.1.0", package_name="Acme Lib"
        )
        assert sorted(report.delivered) == subscribed
        assert report.failed == []
        assert sorted(p.recipient for p in channel.sent) == subscribed
        assert "https://registry.test/packages/com.acme.lib/1.1.0" in channel.sent[0].body_text

    @pytest.mark.asyncio
    async def test_failed_recipient_does_not_stop_others(self, index, subscribed):
        channel = RecordingEmailChannel(fail_for={"carol@example.com"})
        notifier = SubscriberNotifier(index, channel, timeout_seconds=1.0)

        report = await notifier.notify(PKG, NotificationEvent.VERSION_DISCONTINUED, "1.0.0")

        assert report.failed == ["carol@example.com"]
        assert report.delivered == ["erin@example.com"]
        assert report.attempted == 2

    @pytest.mark.asyncio
    async def test_slow_channel_times_out_per_message(self, index, subscribed):
        class SlowChannel(EmailChannel):
            async def send(self, payload):
                await asyncio.sleep(5)

        notifier = SubscriberNotifier(index, SlowChannel(), timeout_seconds=0.05)
        report = await notifier.notify(PKG, NotificationEvent.PACKAGE_DISCONTINUED)
        assert sorted(report.failed) == subscribed
        assert report.delivered == []

    @pytest.mark.asyncio
    async def test_explicit_recipients_skip_lookup(self, notifier, channel):
        report = await notifier.notify(
            PKG,
            NotificationEvent.PACKAGE_DISCONTINUED,
            recipients=["former@example.com"],
        )
        assert report.delivered == ["former@example.com"]
        assert channel.sent[0].subject == f"Package Discontinued: {PKG}"

    @pytest.mark.asyncio
    async def test_no_subscribers(self, notifier, channel):
        report = await notifier.notify(PKG, NotificationEvent.NEW_VERSION, "1.0.0")
        assert report.attempted == 0
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_lookup_failure_is_swallowed(self, channel):
        class BrokenIndex:
            async def subscriber_emails(self, package_id):
                raise RuntimeError("database is locked")

        notifier = SubscriberNotifier(BrokenIndex(), channel)
        report = await notifier.notify(PKG, NotificationEvent.NEW_VERSION, "1.0.0")
        assert report.attempted == 0


class TestEmailTemplates:
    def test_new_version(self):
        payload = new_version_email(
            "a@example.com", PKG, "2.0.0", "Acme Lib", "https://registry.example/"
        )
        assert payload.subject == "New Version: Acme Lib 2.0.0"
        assert "https://registry.example/packages/com.acme.lib/2.0.0" in payload.body_text
        assert "<h1>New Package Version Available</h1>" in payload.body_html

    def test_version_discontinued(self):
        payload = version_discontinued_email("a@example.com", PKG, "1.0.0")
        assert payload.subject == f"Version Discontinued: {PKG} 1.0.0"
        assert "no longer available for download" in payload.body_text

    def test_package_discontinued(self):
        payload = package_discontinued_email("a@example.com", PKG)
        assert payload.subject == f"Package Discontinued: {PKG}"
        assert "permanently discontinued" in payload.body_text

    def test_html_is_escaped(self):
        payload = new_version_email("a@example.com", PKG, "1.0.0", "<script>", "http://x")
        assert "<script>" not in payload.body_html
        assert "&lt;script&gt;" in payload.body_html


class TestEmailChannels:
    @pytest.mark.asyncio
    async def test_logging_channel_never_raises(self):
        await LoggingEmailChannel().send(
            package_discontinued_email("a@example.com", PKG)
        )

    def test_smtp_message_has_text_and_html(self):
        channel = SmtpEmailChannel(
            host="smtp.example.com", sender_email="noreply@example.com", sender_name="Registry"
        )
        message = channel._build(new_version_email("a@example.com", PKG, "1.0.0", "Lib", "http://x"))
        assert message["To"] == "a@example.com"
        assert message["From"] == "Registry <noreply@example.com>"
        assert message.is_multipart()
