import logging
from typing import Any, Dict, List

import discord
from discord import app_commands

from views import (
    BRAND_COLOR,
    FOOTER_NAME,
    PaginatedView,
    dead_thread_renderer,
    keep_alive_renderer,
    thread_list_renderer,
)

logger = logging.getLogger(__name__)

THREADS_PER_PAGE = 10
KEEP_ALIVE_PER_PAGE = 8
ARCHIVED_FETCH_LIMIT = 100


def thread_fields(thread: discord.Thread) -> Dict[str, Any]:
    """Columns of the ``threads`` table taken from a live Discord thread."""
    return {
        "name": thread.name,
        "parent_id": str(thread.parent_id) if thread.parent_id else None,
        "locked": bool(thread.locked),
        "archived": bool(thread.archived),
        "auto_archive_duration": thread.auto_archive_duration,
        "archive_timestamp": thread.archive_timestamp.isoformat() if thread.archive_timestamp else None,
        "message_count": thread.message_count,
        "member_count": thread.member_count,
    }


async def _reply_error(interaction: discord.Interaction, message: str) -> None:
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
    except discord.HTTPException:
        logger.exception("Could not deliver error reply for /%s", interaction.command.name if interaction.command else "?")


async def _send_paginated(interaction: discord.Interaction, view: PaginatedView) -> None:
    embed = await view.render()
    if len(view.items) <= view.per_page:
        # Single page: navigation buttons would all be disabled anyway
        view.remove_item(view.previous_page)
        view.remove_item(view.page_indicator)
        view.remove_item(view.next_page)
    view.message = await interaction.followup.send(embed=embed, view=view, wait=True)


# --- Slash Commands ---


@app_commands.command(name="health", description="Check if the bot is alive")
async def health(interaction: discord.Interaction) -> None:
    bot = interaction.client
    try:
        status = bot.runner.status_snapshot()
        state = "🟢 running" if status["running"] else "⚪ idle"
        await interaction.response.send_message(
            f"✅ Bot is alive. Latency: {bot.latency * 1000:.0f} ms. Keep-alive job: {state}.",
            ephemeral=True,
        )
    except Exception:
        logger.exception("Error in health")
        await _reply_error(interaction, "❌ Error checking bot health.")


@app_commands.command(name="scan-threads", description="Scan all threads in the server and save them")
@app_commands.guild_only()
async def scan_threads(interaction: discord.Interaction) -> None:
    bot = interaction.client
    guild = interaction.guild
    try:
        await interaction.response.defer(thinking=True)
        logger.info("Scanning threads of guild %s (%s)", guild.name, guild.id)

        server_id = await bot.db.servers.upsert(str(guild.id), guild.name)

        found: Dict[int, discord.Thread] = {}
        for thread in await guild.active_threads():
            found[thread.id] = thread

        for channel in guild.channels:
            if not isinstance(channel, (discord.TextChannel, discord.ForumChannel)):
                continue
            try:
                async for thread in channel.archived_threads(limit=ARCHIVED_FETCH_LIMIT):
                    found[thread.id] = thread
            except discord.HTTPException as e:
                logger.warning("Failed to fetch threads for channel %s: %s", channel.name, e)

        logger.info("Found %d threads in total", len(found))
        if not found:
            await interaction.followup.send("No threads found in this server.")
            return

        saved = await bot.db.threads.upsert_many(
            server_id, ((str(thread.id), thread_fields(thread)) for thread in found.values())
        )
        await interaction.followup.send(f"✅ Scanned and saved {saved} threads to the database.")
    except Exception:
        logger.exception("Error scanning threads")
        await _reply_error(interaction, "❌ Error scanning threads.")


@app_commands.command(name="list-threads", description="List all saved threads")
@app_commands.guild_only()
async def list_threads(interaction: discord.Interaction) -> None:
    bot = interaction.client
    guild = interaction.guild
    try:
        await interaction.response.defer(thinking=True)

        async def reload() -> List:
            return await bot.db.threads.list_for_guild(str(guild.id))

        threads = await reload()
        if not threads:
            await interaction.followup.send(
                "❌ No threads found in the database. Use `/scan-threads` first to scan and save threads."
            )
            return

        view = PaginatedView(
            author_id=interaction.user.id,
            items=threads,
            per_page=THREADS_PER_PAGE,
            render=thread_list_renderer(guild.name),
            reload=reload,
        )
        await _send_paginated(interaction, view)
    except Exception:
        logger.exception("Error in list-threads")
        await _reply_error(interaction, "❌ Error fetching threads from database.")


@app_commands.command(name="list-dead-threads", description="List saved threads that are archived")
@app_commands.guild_only()
async def list_dead_threads(interaction: discord.Interaction) -> None:
    bot = interaction.client
    guild = interaction.guild
    try:
        await interaction.response.defer(thinking=True)

        async def reload() -> List:
            return await bot.db.threads.list_for_guild(str(guild.id), archived_only=True)

        threads = await reload()
        if not threads:
            await interaction.followup.send(
                "❌ No dead (archived) threads found in the database. Use `/scan-threads` first "
                "to scan and save threads, or there may be no archived threads."
            )
            return

        view = PaginatedView(
            author_id=interaction.user.id,
            items=threads,
            per_page=THREADS_PER_PAGE,
            render=dead_thread_renderer(guild.name),
            reload=reload,
        )
        await _send_paginated(interaction, view)
    except Exception:
        logger.exception("Error in list-dead-threads")
        await _reply_error(interaction, "❌ Error fetching dead threads from database.")


@app_commands.command(name="keep-alive", description="Keep this thread alive")
@app_commands.guild_only()
async def keep_alive(interaction: discord.Interaction) -> None:
    bot = interaction.client
    guild = interaction.guild
    channel = interaction.channel

    if not isinstance(channel, discord.Thread):
        await interaction.response.send_message("❌ This command can only be used in threads.", ephemeral=True)
        return

    try:
        await interaction.response.defer(thinking=True)
        logger.info("Processing keep-alive for thread: %s (%s)", channel.name, channel.id)

        server_id = await bot.db.servers.upsert(str(guild.id), guild.name)
        thread_pk = await bot.db.threads.upsert(server_id, str(channel.id), **thread_fields(channel))
        _, already_active = await bot.db.subscriptions.subscribe(
            thread_pk, str(interaction.user.id), interaction.user.name
        )

        if already_active:
            await interaction.followup.send(
                "ℹ️ This thread is already in your keep-alive list! "
                "Use `/list-keep-alive` to see all your monitored threads."
            )
            return

        embed = discord.Embed(
            title="🛡️ Thread Keep-Alive Activated",
            description=f"Thread **{channel.name}** has been added to your keep-alive list!",
            color=BRAND_COLOR,
        )
        embed.add_field(name="Thread ID", value=f"`{channel.id}`", inline=True)
        embed.add_field(name="Added by", value=interaction.user.name, inline=True)
        embed.add_field(name="Status", value="🟢 Active", inline=True)
        embed.set_footer(text=f"{FOOTER_NAME} • The bot will now monitor this thread")
        embed.timestamp = discord.utils.utcnow()
        await interaction.followup.send(embed=embed)
    except Exception:
        logger.exception("Error in keep-alive")
        await _reply_error(interaction, "❌ Error adding thread to keep-alive list.")


@app_commands.command(name="remove-keep-alive", description="Stop keeping this thread alive")
@app_commands.guild_only()
async def remove_keep_alive(interaction: discord.Interaction) -> None:
    bot = interaction.client
    channel = interaction.channel

    if not isinstance(channel, discord.Thread):
        await interaction.response.send_message("❌ This command can only be used in threads.", ephemeral=True)
        return

    try:
        await interaction.response.defer(ephemeral=True, thinking=True)
        record = await bot.db.threads.get_by_thread_id(str(channel.id))
        removed = record is not None and await bot.db.subscriptions.deactivate(record.id, str(interaction.user.id))
        if removed:
            await interaction.followup.send(f"🗑️ Thread **{channel.name}** was removed from your keep-alive list.")
        else:
            await interaction.followup.send("ℹ️ This thread is not in your keep-alive list.")
    except Exception:
        logger.exception("Error in remove-keep-alive")
        await _reply_error(interaction, "❌ Error removing thread from keep-alive list.")


@app_commands.command(name="list-keep-alive", description="List the threads you keep alive in this server")
@app_commands.guild_only()
async def list_keep_alive(interaction: discord.Interaction) -> None:
    bot = interaction.client
    guild = interaction.guild
    try:
        await interaction.response.defer(thinking=True)

        async def reload() -> List:
            return await bot.db.subscriptions.list_active_for_user(str(interaction.user.id), str(guild.id))

        subscriptions = await reload()
        if not subscriptions:
            await interaction.followup.send(
                "❌ You don't have any threads in your keep-alive list for this server. "
                "Use `/keep-alive` in a thread to add it!"
            )
            return

        view = PaginatedView(
            author_id=interaction.user.id,
            items=subscriptions,
            per_page=KEEP_ALIVE_PER_PAGE,
            render=keep_alive_renderer(bot, guild.name, interaction.user.name),
            reload=reload,
        )
        await _send_paginated(interaction, view)
    except Exception:
        logger.exception("Error in list-keep-alive")
        await _reply_error(interaction, "❌ Error fetching your keep-alive threads.")


@app_commands.command(name="run-keep-alive-all", description="Run the keep-alive job for every subscribed thread now")
@app_commands.guild_only()
@app_commands.default_permissions(manage_threads=True)
async def run_keep_alive_all(interaction: discord.Interaction) -> None:
    bot = interaction.client
    try:
        await interaction.response.defer(ephemeral=True, thinking=True)
        logger.info("Manual keep-alive run requested by %s", interaction.user)
        await interaction.followup.send("🕐 Keep-alive run started, a summary follows when it finishes.")
        result = await bot.runner.run_now()
    except Exception:
        logger.exception("Error in run-keep-alive-all")
        await _reply_error(interaction, "❌ An error occurred while trying to keep all threads alive.")
        return

    icon = "ℹ️" if result.skipped else ("⏹️" if result.aborted else "✅")
    await _send_summary(interaction, f"{icon} {result.summary()}")


async def _send_summary(interaction: discord.Interaction, message: str) -> None:
    """Followup first; long runs outlive the interaction token, then post in the channel."""
    try:
        await interaction.followup.send(message, ephemeral=True)
        return
    except discord.HTTPException as e:
        logger.info("Interaction expired (%s), posting keep-alive summary in the channel", e)

    channel = interaction.channel
    if channel is None:
        logger.warning("No channel to post keep-alive summary: %s", message)
        return
    try:
        await channel.send(f"{interaction.user.mention} {message}")
    except discord.HTTPException:
        logger.exception("Could not post keep-alive summary")


@app_commands.command(name="stop-keep-alive", description="Stop the running keep-alive job after its current batch")
@app_commands.guild_only()
@app_commands.default_permissions(manage_threads=True)
async def stop_keep_alive(interaction: discord.Interaction) -> None:
    bot = interaction.client
    try:
        if not bot.runner.running:
            await interaction.response.send_message("ℹ️ No keep-alive job is running.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        bot.runner.request_abort()
        stopped = await bot.runner.wait_until_stopped(bot.settings.shutdown_timeout)
        if stopped:
            await interaction.followup.send("⏹️ Keep-alive job stopped.")
        else:
            await interaction.followup.send(
                "⏳ Stop requested. The job is finishing its current batch and will stop shortly."
            )
    except Exception:
        logger.exception("Error in stop-keep-alive")
        await _reply_error(interaction, "❌ Error stopping the keep-alive job.")


ALL_COMMANDS = [
    health,
    scan_threads,
    list_threads,
    list_dead_threads,
    keep_alive,
    remove_keep_alive,
    list_keep_alive,
    run_keep_alive_all,
    stop_keep_alive,
]
