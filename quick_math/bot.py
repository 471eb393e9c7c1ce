import asyncio
import logging
import os
from functools import partial
from typing import Any, Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config_manager import ConfigManager
from .data_manager import DataManager
from .models import GamePhase, RoundEvent, RoundState
from .session_controller import (
    PRODUCT_HINTS,
    PRODUCT_REMOVE_ADS,
    PRODUCT_SLOW_TIMERS,
    SessionController,
)

logger = logging.getLogger(__name__)

BUTTON_STYLES = [discord.ButtonStyle.primary, discord.ButtonStyle.success, discord.ButtonStyle.secondary]

# Events raised by the clock rather than by a command, so nobody else edits the message
CLOCK_DRIVEN_EVENTS = {
    RoundEvent.TIME_UP,
    RoundEvent.HINT_USED,
    RoundEvent.GAME_OVER,
    RoundEvent.SLOW_TIMER_EXPIRED,
}

# Seconds between sweeps for finished sessions nobody came back to
CLEANUP_INTERVAL = 600


def format_lives(lives: int, max_lives: int = 3) -> str:
    """Render lives as hearts."""
    lives = max(0, min(lives, max_lives))
    return "❤️" * lives + "🖤" * (max_lives - lives)


def format_time(time_remaining: float) -> str:
    """Render the countdown with one decimal."""
    return f"{max(time_remaining, 0.0):.1f}s"


def build_round_embed(info: Dict[str, Any]) -> discord.Embed:
    """Build the embed for a question in progress."""
    embed = discord.Embed(
        title=f"🧮 Question {info['question_number']}",
        description=f"# {info['question_text']} = ?",
        color=0xff9900 if info['time_remaining'] <= 2.0 else 0x00ccff
    )
    embed.add_field(name="Score", value=str(info['score']), inline=True)
    embed.add_field(name="Lives", value=format_lives(info['lives']), inline=True)
    embed.add_field(name="⏰ Time", value=format_time(info['time_remaining']), inline=True)

    power_ups = f"💡 {info['hints_available']}   🐢 {info['slow_timers_available']}"
    if info['slow_timer_active']:
        power_ups += f"   (slow for {info['slow_timer_questions_remaining']} more)"
    embed.add_field(name="Power-ups", value=power_ups, inline=False)

    if info['hint_used_this_question']:
        embed.set_footer(text="💡 Hint used: one wrong answer removed")
    else:
        embed.set_footer(text=f"Level {info['difficulty_level']} • Best {info['best_score']}")
    return embed


def build_game_over_embed(info: Dict[str, Any]) -> discord.Embed:
    """Build the embed shown once a round ends."""
    embed = discord.Embed(
        title="💀 Game Over",
        description=f"Final score: **{info['score']}**",
        color=0xff0000
    )
    if info['achieved_new_best_this_session']:
        embed.add_field(name="🏆 New Record!", value=f"Best score is now {info['best_score']}", inline=False)
    else:
        embed.add_field(name="Best Score", value=str(info['best_score']), inline=False)

    if info['has_used_extra_life']:
        embed.add_field(name="⚠️ Continuation Used", value="One extra life per game", inline=False)
        actions = "`/duel` to try again • `/menu` to leave"
    else:
        actions = "`/continue` for +1 life • `/duel` to try again • `/menu` to leave"
    embed.add_field(name="What next?", value=actions, inline=False)
    return embed


class AnswerView(discord.ui.View):
    """Option buttons for the current question."""

    def __init__(self, bot: "DuelBot", channel_id: int, options: list, question_number: int):
        super().__init__(timeout=None)
        self.bot = bot
        self.channel_id = channel_id
        self.question_number = question_number
        for index, value in enumerate(options):
            button = discord.ui.Button(
                label=str(value),
                style=BUTTON_STYLES[index % len(BUTTON_STYLES)],
                custom_id=f"answer:{channel_id}:{question_number}:{index}:{value}"
            )
            button.callback = partial(self._on_press, value)
            self.add_item(button)

    async def _on_press(self, value: int, interaction: discord.Interaction):
        await self.bot.handle_answer(interaction, value, self.question_number)


class DuelBot(commands.Bot):
    """Discord bot hosting quick math duels"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.session_controller: Optional[SessionController] = None

        # Channel ID -> question message being kept up to date
        self._round_messages: Dict[int, discord.Message] = {}
        self._display_tasks: Dict[int, asyncio.Task] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            rejected = self.config_manager.apply_config(self.app_config)
            for error in rejected:
                logger.warning(f"Ignoring configuration value: {error}")

            self.data_manager = DataManager(self.config_manager.get_store_path())
            if self.data_manager.has_load_errors():
                logger.warning(f"Store loaded with errors: {self.data_manager.get_load_errors()}")

            self.session_controller = SessionController(self.data_manager, self.config_manager)
            self.session_controller.add_event_handler(self.on_round_event)
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

            await self.setup_commands()
            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="How to play Quick Math Duel")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="duel", description="Start a new round (or try again after game over)")
        async def duel_command(interaction: discord.Interaction):
            await self.handle_duel(interaction)

        @self.tree.command(name="slow", description="Use a slow timer: time runs 20% slower for 3 questions")
        async def slow_command(interaction: discord.Interaction):
            await self.handle_slow(interaction)

        @self.tree.command(name="continue", description="Continue after game over with one extra life")
        async def continue_command(interaction: discord.Interaction):
            await self.handle_continue(interaction)

        @self.tree.command(name="menu", description="Leave your current round")
        async def menu_command(interaction: discord.Interaction):
            await self.handle_menu(interaction)

        @self.tree.command(name="stats", description="Show your best score, power-ups and weekly streak")
        async def stats_command(interaction: discord.Interaction):
            await self.handle_stats(interaction)

        @self.tree.command(name="status", description="Show duels in progress and bot health")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="shop", description="Add a power-up pack to your inventory")
        @app_commands.describe(item="The pack to add")
        @app_commands.choices(item=[
            app_commands.Choice(name="Hint pack", value=PRODUCT_HINTS),
            app_commands.Choice(name="Slow timer pack", value=PRODUCT_SLOW_TIMERS),
            app_commands.Choice(name="Remove ads", value=PRODUCT_REMOVE_ADS),
        ])
        async def shop_command(interaction: discord.Interaction, item: app_commands.Choice[str]):
            await self.handle_shop(interaction, item.value)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        print(f"🤖 {self.user} is Ready and Online!")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        """Stop all clocks and display loops before disconnecting"""
        if self.session_controller:
            self.session_controller.shutdown()
        if self._cleanup_task:
            self._cleanup_task.cancel()
        for task in self._display_tasks.values():
            task.cancel()
        self._display_tasks.clear()
        await super().close()

    # Round display

    def on_round_event(self, channel_id: int, event: RoundEvent, state: RoundState) -> None:
        """Refresh the question message for events raised by the clock."""
        if event not in CLOCK_DRIVEN_EVENTS:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.create_task(self.refresh_round_message(channel_id))

    def build_round_message(self, info: Dict[str, Any]):
        """Build the embed and view for a session's current state."""
        if info['phase'] == GamePhase.PLAYING.value:
            return build_round_embed(info), AnswerView(self, info['channel_id'], info['options'], info['question_number'])
        return build_game_over_embed(info), None

    async def refresh_round_message(self, channel_id: int) -> None:
        """Edit the stored question message to match the session state."""
        message = self._round_messages.get(channel_id)
        info = self.session_controller.get_session_info(channel_id) if self.session_controller else None
        if message is None or info is None:
            return

        embed, view = self.build_round_message(info)
        try:
            await message.edit(embed=embed, view=view)
        except discord.NotFound:
            logger.warning(f"Round message for channel {channel_id} was deleted")
            self._round_messages.pop(channel_id, None)
        except discord.HTTPException as e:
            logger.warning(f"Failed to refresh round message in channel {channel_id}: {e}")

    async def replace_round_message(self, channel_id: int, message: discord.Message) -> None:
        """Track a new question message and take the buttons off the one it replaces."""
        previous = self._round_messages.get(channel_id)
        self._round_messages[channel_id] = message
        if previous is None or previous.id == message.id:
            return
        try:
            await previous.edit(view=None)
        except discord.HTTPException as e:
            logger.warning(f"Failed to clear old round message in channel {channel_id}: {e}")

    def is_current_question(self, interaction: discord.Interaction, question_number: int) -> bool:
        """Check a button press came from the live message for the question now in play."""
        message = self._round_messages.get(interaction.channel_id)
        if message is None or interaction.message is None or interaction.message.id != message.id:
            return False
        info = self.session_controller.get_session_info(interaction.channel_id)
        return info is not None and info['question_number'] == question_number

    def start_display_loop(self, channel_id: int) -> None:
        """(Re)start the periodic countdown refresh for a channel."""
        existing = self._display_tasks.pop(channel_id, None)
        if existing and not existing.done():
            existing.cancel()
        self._display_tasks[channel_id] = asyncio.get_running_loop().create_task(self._display_loop(channel_id))

    async def _display_loop(self, channel_id: int) -> None:
        refresh = self.config_manager.get_display_refresh()
        while self.session_controller.has_active_session(channel_id):
            await asyncio.sleep(refresh)
            if not self.session_controller.has_active_session(channel_id):
                break
            await self.refresh_round_message(channel_id)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL)
            self.session_controller.cleanup_inactive_sessions()
            for channel_id in list(self._round_messages):
                if self.session_controller.get_session(channel_id) is None:
                    self._round_messages.pop(channel_id, None)

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="🧮 Quick Math Duel",
            description="Answer arithmetic questions before the clock runs out. Three mistakes and it's over!",
            color=0x6699ff
        )
        embed.add_field(
            name="🎮 Playing",
            value=(
                "`/duel` start a round\n"
                "Press the button with the right answer\n"
                "Every 5 points the questions get harder and the clock gets shorter"
            ),
            inline=False
        )
        embed.add_field(
            name="⚡ Power-ups",
            value=(
                "💡 Hints are used automatically with 2 seconds left and remove a wrong answer\n"
                "🐢 `/slow` makes time run 20% slower for 3 questions"
            ),
            inline=False
        )
        embed.add_field(
            name="🔁 After game over",
            value="`/continue` one extra life per game • `/duel` try again • `/menu` leave",
            inline=False
        )
        embed.add_field(name="📊 Progress", value="`/stats` • `/shop` • `/status`", inline=False)

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send help message: {e}")

    async def handle_duel(self, interaction: discord.Interaction):
        """Handle /duel command"""
        channel_id = interaction.channel_id
        # Restarting after game over may show an interstitial first
        await interaction.response.defer(thinking=True)
        result = await self.session_controller.start_round(channel_id, interaction.user.id)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Cannot Start")
            return

        embed, view = self.build_round_message(result['session_info'])
        try:
            message = await interaction.followup.send(embed=embed, view=view, wait=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send round message in channel {channel_id}: {e}")
            return

        await self.replace_round_message(channel_id, message)
        self.start_display_loop(channel_id)

    async def handle_answer(self, interaction: discord.Interaction, value: int, question_number: Optional[int] = None):
        """Handle an answer button press"""
        channel_id = interaction.channel_id
        if question_number is not None and not self.is_current_question(interaction, question_number):
            logger.info(f"Ignored answer {value} for old question {question_number} in channel {channel_id}")
            await self.send_warning_response(
                interaction, "That question is no longer in play. Answer the latest one.", "⚠️ Old Question"
            )
            return

        result = self.session_controller.answer(channel_id, interaction.user.id, value)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Answer Not Counted")
            return

        embed, view = self.build_round_message(result['session_info'])
        if not result['correct']:
            embed.set_author(name=f"❌ {value} was wrong")
        try:
            await interaction.response.edit_message(embed=embed, view=view)
        except discord.HTTPException as e:
            logger.warning(f"Failed to update round message in channel {channel_id}: {e}")

    async def handle_slow(self, interaction: discord.Interaction):
        """Handle /slow command"""
        result = self.session_controller.activate_slow_timer(interaction.channel_id, interaction.user.id)
        if not result['success']:
            await self.send_warning_response(interaction, result['user_message'], "⚠️ Slow Timer")
            return
        await self.send_info_response(interaction, result['user_message'], "🐢 Slow Timer Active")
        await self.refresh_round_message(interaction.channel_id)

    async def handle_continue(self, interaction: discord.Interaction):
        """Handle /continue command"""
        channel_id = interaction.channel_id
        await interaction.response.defer(thinking=True)
        result = await self.session_controller.continue_with_extra_life(channel_id, interaction.user.id)
        if not result['success']:
            await self.send_warning_response(interaction, result['user_message'], "⚠️ Cannot Continue")
            return

        embed, view = self.build_round_message(result['session_info'])
        embed.set_author(name=result['user_message'])
        try:
            message = await interaction.followup.send(embed=embed, view=view, wait=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send continued round in channel {channel_id}: {e}")
            return
        await self.replace_round_message(channel_id, message)
        self.start_display_loop(channel_id)

    async def handle_menu(self, interaction: discord.Interaction):
        """Handle /menu command"""
        channel_id = interaction.channel_id
        result = self.session_controller.return_to_menu(channel_id, interaction.user.id)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'])
            return

        task = self._display_tasks.pop(channel_id, None)
        if task and not task.done():
            task.cancel()
        self._round_messages.pop(channel_id, None)

        info = result['session_info']
        await self.send_info_response(
            interaction,
            f"Final score {info['score']} • Best {info['best_score']}",
            "👋 Back to the menu"
        )

    async def handle_stats(self, interaction: discord.Interaction):
        """Handle /stats command"""
        stats = self.session_controller.get_player_stats(interaction.user.id)
        embed = discord.Embed(title="📊 Your Stats", color=0x00ff00)
        embed.add_field(name="🏆 Best Score", value=str(stats['best_score']), inline=True)
        embed.add_field(name="🔥 Weekly Streak", value=f"{stats['weekly_streak']} weeks", inline=True)
        embed.add_field(
            name="⚡ Power-ups",
            value=f"💡 {stats['hints_available']} hints\n🐢 {stats['slow_timers_available']} slow timers",
            inline=False
        )
        if stats['hints_available'] <= 2 or stats['slow_timers_available'] <= 2:
            embed.set_footer(text="Running low! Top up with /shop")

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send stats: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        channel_id = interaction.channel_id
        sessions = self.session_controller.get_all_sessions()
        playing = sum(1 for info in sessions.values() if info['phase'] == GamePhase.PLAYING.value)

        embed = discord.Embed(title="📋 Duel Status", color=0x6699ff)
        info = sessions.get(channel_id)
        if info is None:
            here = "No duel here. Start one with `/duel`."
        else:
            here = f"<@{info['player_id']}> • {info['phase'].replace('_', ' ')} • score {info['score']}"
        embed.add_field(name="This channel", value=here, inline=False)
        embed.add_field(name="Duels", value=f"{playing} playing / {len(sessions)} open", inline=True)
        embed.add_field(
            name="Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )

        problems = []
        health = self.config_manager.get_configuration_health_check()
        problems.extend(health['errors'])
        problems.extend(health['warnings'])
        if self.data_manager:
            loading = self.data_manager.get_loading_summary()
            if loading['has_errors']:
                problems.append(f"⚠️ Store loaded with {loading['error_count']} error(s)")
        rejected = self.session_controller.get_error_summary(channel_id)['error_count']
        if rejected:
            problems.append(f"⚠️ {rejected} command(s) rejected in this channel")
        if problems:
            embed.add_field(name="Attention", value="\n".join(problems)[:1024], inline=False)
        else:
            embed.set_footer(text="✅ Everything looks healthy")

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send status: {e}")

    async def handle_shop(self, interaction: discord.Interaction, product_id: str):
        """Handle /shop command"""
        result = self.session_controller.complete_purchase(interaction.user.id, product_id)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Shop")
            return
        await self.send_info_response(interaction, result['user_message'], "🛒 Shop")
        await self.refresh_round_message(interaction.channel_id)

    # Responses

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_embed_response(interaction, message, title, 0xff0000)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed_response(interaction, message, title, 0x6699ff)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed_response(interaction, message, title, 0xffaa00)

    async def _send_embed_response(self, interaction: discord.Interaction, message: str, title: str, color: int):
        embed = discord.Embed(title=title, description=message, color=color)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send embed response: {e}")
            # Fallback to simple message
            try:
                simple_message = f"{title}: {message}"
                if interaction.response.is_done():
                    await interaction.followup.send(simple_message, ephemeral=True)
                else:
                    await interaction.response.send_message(simple_message, ephemeral=True)
            except discord.HTTPException:
                logger.error("Failed to send fallback response message")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = DuelBot(config)

    try:
        logger.info("Starting Quick Math Duel bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
