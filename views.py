import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

import discord

from models import Subscription, ThreadRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

BRAND_COLOR = 0xFBBF24
DEAD_COLOR = 0x6B7280
FOOTER_NAME = "AliveThread Bot"


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Sequence[T]
    number: int  # 1-based
    total_pages: int
    start: int  # index of the first item overall
    total: int

    @property
    def end(self) -> int:
        return self.start + len(self.items)


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


def get_page(items: Sequence[T], number: int, per_page: int) -> Page[T]:
    """Returns page ``number`` (clamped to the valid range)."""
    total_pages = page_count(len(items), per_page)
    number = min(max(number, 1), total_pages)
    start = (number - 1) * per_page
    return Page(
        items=items[start:start + per_page],
        number=number,
        total_pages=total_pages,
        start=start,
        total=len(items),
    )


RenderFn = Callable[[Page], Awaitable[discord.Embed]]
ReloadFn = Callable[[], Awaitable[List]]


class PaginatedView(discord.ui.View):
    """Previous / Next / Refresh buttons over a list rendered one page at a time."""

    def __init__(
        self,
        *,
        author_id: int,
        items: List,
        per_page: int,
        render: RenderFn,
        reload: Optional[ReloadFn] = None,
        timeout: float = 300.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self.author_id = author_id
        self.items = items
        self.per_page = per_page
        self.page = 1
        self.message: Optional[discord.Message] = None
        self._render = render
        self._reload = reload
        self._sync_buttons()

    def current_page(self) -> Page:
        return get_page(self.items, self.page, self.per_page)

    async def render(self) -> discord.Embed:
        return await self._render(self.current_page())

    def _sync_buttons(self) -> None:
        current = self.current_page()
        self.page = current.number
        self.previous_page.disabled = current.number <= 1
        self.next_page.disabled = current.number >= current.total_pages
        self.page_indicator.label = f"{current.number}/{current.total_pages}"
        self.refresh.disabled = self._reload is None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message(
                "❌ Only the user who ran the command can use these buttons.", ephemeral=True
            )
            return False
        return True

    async def _update(self, interaction: discord.Interaction) -> None:
        self._sync_buttons()
        await interaction.response.edit_message(embed=await self.render(), view=self)

    @discord.ui.button(label="◀️ Previous", style=discord.ButtonStyle.secondary)
    async def previous_page(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.page -= 1
        await self._update(interaction)

    @discord.ui.button(label="1/1", style=discord.ButtonStyle.primary, disabled=True)
    async def page_indicator(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.defer()

    @discord.ui.button(label="Next ▶️", style=discord.ButtonStyle.secondary)
    async def next_page(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.page += 1
        await self._update(interaction)

    @discord.ui.button(label="🔄 Refresh", style=discord.ButtonStyle.success)
    async def refresh(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        if self._reload is not None:
            self.items = await self._reload()
        await self._update(interaction)

    async def on_timeout(self) -> None:
        for child in self.children:
            if isinstance(child, discord.ui.Button):
                child.disabled = True
        self.page_indicator.label = "⏰ Interaction Expired"
        if self.message is None:
            return
        try:
            await self.message.edit(view=self)
        except discord.HTTPException:
            logger.info("Could not disable buttons, message may have been deleted")


# --- Embed Renderers ---


def _base_embed(title: str, description: str, color: int, page: Page) -> discord.Embed:
    embed = discord.Embed(title=title, description=description, color=color)
    embed.set_footer(text=f"Page {page.number}/{page.total_pages} • {FOOTER_NAME}")
    embed.timestamp = discord.utils.utcnow()
    return embed


def thread_list_renderer(guild_name: str) -> RenderFn:
    async def render(page: Page) -> discord.Embed:
        embed = _base_embed(
            f"📋 Thread List - {guild_name}",
            f"Showing threads {page.start + 1}-{page.end} of {page.total}",
            BRAND_COLOR,
            page,
        )
        thread: ThreadRecord
        for index, thread in enumerate(page.items, start=page.start + 1):
            status = "🗃️ Archived" if thread.archived else "✅ Active"
            locked = " 🔒" if thread.locked else ""
            messages = f" ({thread.message_count} msgs)" if thread.message_count else ""
            parent = f"<#{thread.parent_id}>" if thread.parent_id else "Unknown"
            embed.add_field(
                name=f"{index}. {thread.name or 'Unnamed Thread'}{locked}",
                value=f"{status}{messages}\n**ID:** `{thread.thread_id}`\n**Parent:** {parent}",
                inline=False,
            )
        return embed

    return render


def dead_thread_renderer(guild_name: str) -> RenderFn:
    async def render(page: Page) -> discord.Embed:
        embed = _base_embed(
            f"🪦 Dead (Archived) Threads - {guild_name}",
            f"Showing dead threads {page.start + 1}-{page.end} of {page.total}",
            DEAD_COLOR,
            page,
        )
        thread: ThreadRecord
        for index, thread in enumerate(page.items, start=page.start + 1):
            locked = " 🔒" if thread.locked else ""
            messages = f" ({thread.message_count} msgs)" if thread.message_count else ""
            archived = f"\n**Archived:** {thread.archive_timestamp}" if thread.archive_timestamp else ""
            parent = f"<#{thread.parent_id}>" if thread.parent_id else "Unknown"
            embed.add_field(
                name=f"{index}. {thread.name or 'Unnamed Thread'}{locked}",
                value=f"🗃️ Archived{messages}\n**ID:** `{thread.thread_id}`\n**Parent:** {parent}{archived}",
                inline=False,
            )
        return embed

    return render


def keep_alive_renderer(client: discord.Client, guild_name: str, user_name: str) -> RenderFn:
    """Lists subscriptions with their live state fetched from Discord."""

    async def render(page: Page) -> discord.Embed:
        embed = discord.Embed(
            title=f"🛡️ Your Keep-Alive Threads - {guild_name}",
            description=f"Showing threads {page.start + 1}-{page.end} of {page.total}",
            color=BRAND_COLOR,
        )
        embed.set_footer(text=f"Page {page.number}/{page.total_pages} • {user_name}")
        embed.timestamp = discord.utils.utcnow()

        subscription: Subscription
        for index, subscription in enumerate(page.items, start=page.start + 1):
            thread_id = subscription.thread.thread_id
            try:
                channel = client.get_channel(int(thread_id)) or await client.fetch_channel(int(thread_id))
            except discord.HTTPException:
                channel = None

            if isinstance(channel, discord.Thread):
                status = "🗃️ Archived" if channel.archived else "✅ Active"
                if channel.locked:
                    status += " 🔒"
                link = channel.mention
            else:
                status = "❌ Not found"
                link = "Unknown"

            embed.add_field(
                name=f"{index}. {subscription.thread.name or 'Unnamed Thread'}",
                value=f"{status}\n**Thread:** {link}\n**Since:** {subscription.created_at}",
                inline=False,
            )
        return embed

    return render
