import discord
from discord.ext import commands
from typing import Optional

from queen_league.config import Config
from queen_league.data_models.scoring import RunResult, RunStatus
from queen_league.utils.logger import setup_logger

logger = setup_logger(__name__)

STATUS_COLORS = {
    RunStatus.COMPLETED: discord.Color.green(),
    RunStatus.FAILED: discord.Color.red(),
    RunStatus.REJECTED: discord.Color.orange(),
}

def build_run_embed(result: RunResult) -> discord.Embed:
    """Summarize a recalculation run for the operator"""
    title = {
        RunStatus.COMPLETED: f"✅ Episode {result.episode_number} Recalculated",
        RunStatus.FAILED: f"❌ Episode {result.episode_number} Recalculation Failed",
        RunStatus.REJECTED: f"⏳ Episode {result.episode_number} Already Recalculating",
    }[result.status]
    embed = discord.Embed(title=title, color=STATUS_COLORS[result.status])
    
    if result.status == RunStatus.COMPLETED:
        embed.add_field(name="Scores Updated", value=result.rows_updated, inline=True)
        embed.add_field(name="Stale Scores Removed", value=result.rows_removed, inline=True)
        embed.add_field(name="Standings Updated", value=result.standings_updated, inline=True)
    elif result.error:
        embed.description = result.error
    
    if result.failed_step:
        embed.add_field(name="Failed Step", value=result.failed_step.value, inline=True)
    if result.multipliers:
        embed.add_field(
            name="Multipliers",
            value=", ".join(f"#{rank}: {value:g}x" for rank, value in sorted(result.multipliers.items())),
            inline=False
        )
    if result.config_warnings:
        embed.add_field(name="⚠️ Config Warnings", value="\n".join(result.config_warnings)[:1024], inline=False)
    embed.set_footer(text=f"Completed in {result.duration_seconds:.2f}s")
    return embed


class ScoringAdminCog(commands.Cog):
    """Owner-only commands for score recalculation and scoring settings"""
    
    def __init__(self, bot):
        self.bot = bot
        self.logger = logger
    
    def cog_check(self, ctx):
        """Check if user is the bot owner"""
        return ctx.author.id == Config.OWNER_DISCORD_ID
    
    @commands.hybrid_command(name='recalculate')
    async def recalculate(self, ctx, episode: int, m1: Optional[float] = None, m2: Optional[float] = None,
                          m3: Optional[float] = None, m4: Optional[float] = None):
        """Recalculate scores and standings for an episode (Owner only)"""
        override = {rank: value for rank, value in enumerate((m1, m2, m3, m4), start=1) if value is not None}
        
        await ctx.send(embed=discord.Embed(
            title=f"🔄 Recalculating Episode {episode}",
            description="Scoring rosters and rebuilding standings...",
            color=discord.Color.blue()
        ))
        try:
            result = await self.bot.recalculation_service.recalculate(
                episode, multiplier_override=override or None, actor_id=ctx.author.id
            )
        except ValueError as e:
            await ctx.send(f"❌ {e}")
            return
        await ctx.send(embed=build_run_embed(result))
    
    @commands.hybrid_command(name='set-multiplier')
    async def set_multiplier(self, ctx, rank: int, value: str):
        """Set the scoring multiplier for a roster rank (Owner only)"""
        if not 1 <= rank <= Config.ROSTER_MAX_RANK:
            await ctx.send(f"❌ Rank must be between 1 and {Config.ROSTER_MAX_RANK}.")
            return
        await self.bot.settings_service.set(Config.multiplier_key(rank), value, user_id=ctx.author.id)
        await ctx.send(f"✅ Rank {rank} multiplier set to `{value}`. Run `recalculate` to apply it.")
    
    @commands.hybrid_command(name='set-episode')
    async def set_episode(self, ctx, episode: int):
        """Set the current episode (Owner only)"""
        try:
            await self.bot.settings_service.set_current_episode(episode, user_id=ctx.author.id)
        except ValueError as e:
            await ctx.send(f"❌ {e}")
            return
        await ctx.send(f"✅ Current episode set to {episode}.")
    
    @commands.hybrid_command(name='set-active')
    async def set_active(self, ctx, user_id: int, active: bool):
        """Show or hide a user on leaderboards (Owner only)"""
        if not await self.bot.db.set_user_active(user_id, active):
            await ctx.send(f"❌ User {user_id} not found.")
            return
        state = "visible on" if active else "hidden from"
        await ctx.send(f"✅ User {user_id} is now {state} leaderboards.")
    
    @commands.hybrid_command(name='standings')
    async def standings(self, ctx, league_id: Optional[int] = None):
        """Show season standings, optionally for one league (Owner only)"""
        entries = await self.bot.standings_service.read_standings(league_id)
        embed = discord.Embed(
            title=f"🏆 Standings{f' - League {league_id}' if league_id else ''}",
            color=discord.Color.gold()
        )
        if not entries:
            embed.description = "No standings yet. Run `recalculate` first."
        else:
            lines = [
                f"L{e.league_id} #{e.rank} {e.username}: {e.total_score:g}"
                for e in entries[:25]
            ]
            embed.description = "\n".join(lines)
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(ScoringAdminCog(bot))
