import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord

from commands import health, run_keep_alive_all, stop_keep_alive
from keep_alive_runner import RunResult


def _http_error(cls, status: int, reason: str):
    return cls(MagicMock(status=status, reason=reason), reason)


def _interaction(result=None, run_error=None) -> MagicMock:
    interaction = MagicMock()
    deferred = []

    async def defer(**kwargs) -> None:
        deferred.append(kwargs)

    interaction.response.defer = AsyncMock(side_effect=defer)
    interaction.response.send_message = AsyncMock()
    interaction.response.is_done = MagicMock(side_effect=lambda: bool(deferred))
    interaction.followup.send = AsyncMock()
    interaction.channel.send = AsyncMock()
    interaction.user.mention = "<@42>"

    bot = interaction.client
    bot.latency = 0.05
    bot.settings.shutdown_timeout = 3.0
    bot.runner.run_now = AsyncMock(return_value=result, side_effect=run_error)
    bot.runner.wait_until_stopped = AsyncMock(return_value=True)
    bot.runner.running = False
    bot.runner.status_snapshot.return_value = {"running": False}
    return interaction


def _last_followup(interaction: MagicMock) -> str:
    return interaction.followup.send.await_args.args[0]


def test_run_all_acknowledges_then_reports_completed_run() -> None:
    result = RunResult(success_count=4, failure_count=1, processed=5, batches=1)
    interaction = _interaction(result)

    asyncio.run(run_keep_alive_all.callback(interaction))

    interaction.response.defer.assert_awaited_once_with(ephemeral=True, thinking=True)
    first = interaction.followup.send.await_args_list[0]
    assert first.args[0].startswith("🕐 Keep-alive run started")
    assert _last_followup(interaction) == f"✅ {result.summary()}"
    assert "processed 5 thread(s) in 1 batch(es): 4 success, 1 failure(s)" in _last_followup(interaction)
    assert interaction.followup.send.await_args.kwargs == {"ephemeral": True}


def test_run_all_reports_aborted_run() -> None:
    interaction = _interaction(RunResult(success_count=5, processed=5, batches=1, aborted=True))

    asyncio.run(run_keep_alive_all.callback(interaction))

    assert _last_followup(interaction).startswith("⏹️ Keep-alive run aborted after it processed 5 thread(s)")


def test_run_all_reports_skipped_run() -> None:
    interaction = _interaction(RunResult(skipped=True))

    asyncio.run(run_keep_alive_all.callback(interaction))

    assert _last_followup(interaction) == (
        "ℹ️ A keep-alive run is already in progress, this request was skipped."
    )


def test_run_all_failure_sends_ephemeral_error() -> None:
    interaction = _interaction(run_error=RuntimeError("database is locked"))

    asyncio.run(run_keep_alive_all.callback(interaction))

    interaction.followup.send.assert_awaited_with(
        "❌ An error occurred while trying to keep all threads alive.", ephemeral=True
    )
    interaction.channel.send.assert_not_awaited()


def test_run_all_posts_summary_in_channel_once_interaction_expired() -> None:
    result = RunResult(success_count=2, processed=2, batches=1)
    interaction = _interaction(result)
    interaction.followup.send.side_effect = [None, _http_error(discord.NotFound, 404, "Unknown Webhook")]

    asyncio.run(run_keep_alive_all.callback(interaction))

    interaction.channel.send.assert_awaited_once_with(f"<@42> ✅ {result.summary()}")


def test_run_all_without_channel_drops_summary_quietly() -> None:
    interaction = _interaction(RunResult(processed=0))
    interaction.channel = None
    interaction.followup.send.side_effect = [None, _http_error(discord.NotFound, 404, "Unknown Webhook")]

    asyncio.run(run_keep_alive_all.callback(interaction))

    assert interaction.followup.send.await_count == 2


def test_stop_when_idle_replies_immediately() -> None:
    interaction = _interaction()

    asyncio.run(stop_keep_alive.callback(interaction))

    interaction.response.send_message.assert_awaited_once_with("ℹ️ No keep-alive job is running.", ephemeral=True)
    interaction.client.runner.request_abort.assert_not_called()


def test_stop_reports_stopped_job() -> None:
    interaction = _interaction()
    runner = interaction.client.runner
    runner.running = True

    asyncio.run(stop_keep_alive.callback(interaction))

    runner.request_abort.assert_called_once_with()
    runner.wait_until_stopped.assert_awaited_once_with(3.0)
    interaction.followup.send.assert_awaited_once_with("⏹️ Keep-alive job stopped.")


def test_stop_reports_job_still_finishing_its_batch() -> None:
    interaction = _interaction()
    runner = interaction.client.runner
    runner.running = True
    runner.wait_until_stopped.return_value = False

    asyncio.run(stop_keep_alive.callback(interaction))

    assert _last_followup(interaction).startswith("⏳ Stop requested.")


def test_stop_failure_sends_ephemeral_error() -> None:
    interaction = _interaction()
    runner = interaction.client.runner
    runner.running = True
    runner.wait_until_stopped.side_effect = RuntimeError("boom")

    asyncio.run(stop_keep_alive.callback(interaction))

    interaction.followup.send.assert_awaited_once_with("❌ Error stopping the keep-alive job.", ephemeral=True)


def test_health_reports_latency_and_job_state() -> None:
    interaction = _interaction()
    interaction.client.runner.status_snapshot.return_value = {"running": True}

    asyncio.run(health.callback(interaction))

    interaction.response.send_message.assert_awaited_once_with(
        "✅ Bot is alive. Latency: 50 ms. Keep-alive job: 🟢 running.", ephemeral=True
    )


def test_health_failure_sends_ephemeral_error() -> None:
    interaction = _interaction()
    interaction.client.runner.status_snapshot.side_effect = RuntimeError("boom")

    asyncio.run(health.callback(interaction))

    interaction.response.send_message.assert_awaited_once_with("❌ Error checking bot health.", ephemeral=True)
