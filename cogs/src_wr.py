import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands

from .src_wr_client import SrcClient
from .src_wr_models import NewRecord, NewRun, Taxonomy
from .src_wr_shared import (
    CHANNEL_ID,
    DB_FILE,
    EMBED_COLOUR,
    GAME_ID,
    MODE,
    POLL_SECONDS,
    SEED_RECORDS,
    SEEN_WINDOW,
    category_label,
    format_time,
    logger,
    run_id_from_link,
    run_link,
)
from .src_wr_storage import SnapshotError, WRStorage
from .src_wr_tracker import RecordTracker


def build_record_embed(event: NewRecord, taxonomy: Taxonomy) -> discord.Embed:
    run = event.run
    node = event.slot.node
    labels = [c.value_label for c in event.slot.choices]
    embed = discord.Embed(
        title="NEW World Record",
        url=run_link(taxonomy.abbreviation, run.id),
        colour=discord.Colour(EMBED_COLOUR),
        description=f"A new WR has been posted for {category_label(node.name, node.level_name, labels)}",
    )
    embed.add_field(name="Runner", value=run.player_name)
    embed.add_field(name="Time", value=format_time(run.time))
    if event.previous_time is not None:
        embed.set_footer(text=f"Previous record: {format_time(event.previous_time)}")
    embed.timestamp = datetime.now(timezone.utc)
    return embed


async def announced_run_ids(channel: discord.abc.Messageable, limit: int = SEEN_WINDOW) -> List[str]:
    found: List[str] = []
    async for message in channel.history(limit=limit):
        if len(message.embeds) != 1:
            continue
        run_id = run_id_from_link(message.embeds[0].url)
        if run_id:
            found.append(run_id)
    return found


class SRCWorldRecordCog(commands.Cog):
    src_group = app_commands.Group(name="src", description="Speedrun.com commands")
    wr_group = app_commands.Group(name="wr", description="World record tracker", parent=src_group)

    def __init__(self, client: commands.Bot, *, game_id: str = GAME_ID, channel_id: Optional[int] = CHANNEL_ID, db_file: str = DB_FILE):
        self.client = client
        self.game_id = game_id
        self.channel_id = channel_id
        self.session: Optional[aiohttp.ClientSession] = None
        self.storage = WRStorage(db_file)
        self.src: Optional[SrcClient] = None
        self.tracker: Optional[RecordTracker] = None
        self._watch_task: Optional[asyncio.Task] = None

    async def cog_load(self):
        self.session = aiohttp.ClientSession()
        self.src = SrcClient(self.session)
        self.tracker = RecordTracker(self.src, self.storage, self.game_id, mode=MODE, poll_seconds=POLL_SECONDS)
        self.tracker.add_listener(self.on_tracker_event)
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch_loop())

    def cog_unload(self):
        if self._watch_task:
            self._watch_task.cancel()
            self._watch_task = None
        if self.session and not self.session.closed:
            asyncio.create_task(self.session.close())

    def _channel(self) -> Optional[discord.abc.Messageable]:
        if not self.channel_id:
            return None
        return self.client.get_channel(self.channel_id)

    async def _start_tracker(self):
        while True:
            try:
                await self.tracker.start(seed=SEED_RECORDS and MODE != "query")
                return
            except SnapshotError:
                logger.critical("Record snapshot at %s is corrupt; not tracking", self.storage.db_path)
                raise
            except Exception:
                logger.exception("Could not start tracking game %s, retrying", self.game_id)
            await asyncio.sleep(POLL_SECONDS)

    async def _watch_loop(self):
        await self.client.wait_until_ready()
        await self._start_tracker()
        channel = self._channel()
        if channel is not None and not self.tracker.seen_ids:
            try:
                seen = await announced_run_ids(channel)
            except discord.HTTPException:
                logger.exception("Could not read announcement history in %s", self.channel_id)
            else:
                logger.info("found %s announced WRs", len(seen))
                await self.tracker.seed_seen_ids(seen)
        await self.tracker.run_forever()

    async def on_tracker_event(self, event):
        if isinstance(event, NewRun):
            run = event.run
            node = self.tracker.taxonomy.node(run.category_id, run.level_id)
            if node is not None:
                labels = [c.value_label for c in self.tracker.taxonomy.resolve_choices(run)]
                where = category_label(node.name, node.level_name, labels)
            else:
                where = run.category_id
            logger.info("New run %s: %s by %s in %s", run.id, where, run.player_name, format_time(run.time))
            return
        if not isinstance(event, NewRecord):
            return
        channel = self._channel()
        if channel is None:
            return
        await channel.send(embed=build_record_embed(event, self.tracker.taxonomy))

    @wr_group.command(name="status", description="Show the world record tracker state")
    async def wr_status(self, interaction: discord.Interaction):
        tracker = self.tracker
        if tracker is None or tracker.store is None:
            await interaction.response.send_message("The tracker is still starting.", ephemeral=True)
            return
        embed = discord.Embed(title=f"WR tracker - {tracker.taxonomy.name}", colour=discord.Colour(EMBED_COLOUR))
        embed.add_field(name="State", value=tracker.state.value, inline=True)
        embed.add_field(name="Leaderboards", value=str(len(tracker.store)), inline=True)
        embed.add_field(name="With record", value=str(len(tracker.store.held())), inline=True)
        embed.add_field(name="Mode", value=tracker.mode, inline=True)
        if tracker.last_cycle_at:
            embed.add_field(name="Last check", value=f"<t:{int(tracker.last_cycle_at.timestamp())}:R>", inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(client: commands.Bot) -> None:
    await client.add_cog(SRCWorldRecordCog(client))
