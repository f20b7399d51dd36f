import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from queen_league.config import Config
from queen_league.database.database import Database
from queen_league.services.recalculation import RecalculationService
from queen_league.services.settings import SettingsService
from queen_league.services.standings import StandingsService
from queen_league.utils.episode_lock import EpisodeLockManager
from queen_league.utils.logger import setup_logger

class ScoringBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        
        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )
        
        self.db: Optional[Database] = None
        self.lock_manager: Optional[EpisodeLockManager] = None
        self.settings_service: Optional[SettingsService] = None
        self.standings_service: Optional[StandingsService] = None
        self.recalculation_service: Optional[RecalculationService] = None
        self.logger = setup_logger(__name__)
        
    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Scoring Bot...")
        
        self.db = Database()
        await self.db.initialize()
        
        self.settings_service = SettingsService(self.db.session_factory)
        await self.settings_service.load_all()
        
        self.lock_manager = await EpisodeLockManager.create()
        self.recalculation_service = RecalculationService(self.db, lock_manager=self.lock_manager)
        self.standings_service = StandingsService(self.db.session_factory)
        self.logger.info("Scoring services initialized")
        
        await self.load_extension('queen_league.cogs.scoring_admin')
        await self._sync_commands()
        
        self.logger.info("Scoring Bot setup complete!")
    
    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        guild_ids = Config.get_guild_ids()
        try:
            if guild_ids:
                for guild_id in guild_ids:
                    guild = discord.Object(id=guild_id)
                    self.tree.copy_global_to(guild=guild)
                    synced = await self.tree.sync(guild=guild)
                    self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
            else:
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
        except discord.errors.HTTPException as e:
            self.logger.error(f"HTTP error syncing commands. Status: {e.status}, Response: {e.text}", exc_info=True)
    
    async def on_ready(self):
        self.logger.info(f"{self.user} is online")
    
    async def on_command_error(self, ctx, error):
        if isinstance(error, commands.CheckFailure):
            await ctx.send("❌ This command is restricted to the bot owner.")
            return
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"❌ {error}")
            return
        self.logger.error(f"Unhandled command error in {ctx.command}: {error}", exc_info=error)
        await ctx.send("❌ An unexpected error occurred. Check the logs.")
    
    async def close(self):
        """Cleanup when bot shuts down"""
        self.logger.info("Shutting down Scoring Bot...")
        if self.lock_manager:
            await self.lock_manager.close()
        if self.db:
            await self.db.close()
        await super().close()

async def main():
    Config.validate()
    bot = ScoringBot()
    async with bot:
        await bot.start(Config.DISCORD_TOKEN)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Bot stopped by user")
