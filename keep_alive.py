import logging

import discord

logger = logging.getLogger(__name__)

KEEP_ALIVE_MESSAGE = "🔄 **Thread Keep-Alive** - This message will be deleted in 10 seconds."
DELETE_AFTER_SECONDS = 10.0


async def keep_thread_alive(client: discord.Client, thread_id: str) -> bool:
    """Posts a throwaway message into a thread so Discord resets its archive timer.

    The message deletes itself after ``DELETE_AFTER_SECONDS``; discord.py
    schedules that in the background and nobody waits on it. Returns False
    when the thread is gone, not a thread, or the send was refused.
    """
    try:
        channel = client.get_channel(int(thread_id)) or await client.fetch_channel(int(thread_id))
    except discord.NotFound:
        logger.warning("Thread %s not found", thread_id)
        return False
    except discord.HTTPException as e:
        logger.error("Failed to fetch thread %s: %s", thread_id, e)
        return False

    if not isinstance(channel, discord.Thread):
        logger.warning("Channel %s is not a thread", thread_id)
        return False

    try:
        await channel.send(
            KEEP_ALIVE_MESSAGE,
            suppress_embeds=True,
            delete_after=DELETE_AFTER_SECONDS,
        )
    except discord.Forbidden:
        logger.error("Missing permission to post in thread %s (%s)", channel.name, thread_id)
        return False
    except discord.HTTPException as e:
        logger.error("Failed to keep thread %s alive: %s", thread_id, e)
        return False

    logger.info("Keep-alive message sent to thread: %s", channel.name)
    return True
