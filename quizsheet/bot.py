import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Optional

import discord
from discord.ext import commands

from .config_manager import ConfigManager
from .models import LoadState, Phase
from .question_loader import QuestionLoader, QuestionLoadError
from .quiz_controller import QuizController
from .views import QuizView
from . import quiz_state

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_directory: str = "./logs/"):
    """Set up logging for debugging and monitoring."""
    logs_dir = Path(log_directory)
    logs_dir.mkdir(parents=True, exist_ok=True)

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),  # Console output
            logging.FileHandler(logs_dir / "bot.log", encoding='utf-8'),  # File output
        ]
    )

    # Set up error-specific logging
    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


class QuizBot(commands.Bot):
    """Discord bot hosting spreadsheet-backed quiz widgets"""

    def __init__(self, config=None):
        # Slash commands only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None  # We'll implement our own help command
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.question_loader: Optional[QuestionLoader] = None
        self.quiz_controller: Optional[QuizController] = None
        self._views: Dict[int, QuizView] = {}
        self._load_task: Optional[asyncio.Task] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")

        self.config_manager = ConfigManager()
        self.config_manager.apply_config(self.app_config.get('quiz', {}))
        validation = self.config_manager.validate_settings()
        for issue in validation['issues']:
            logger.warning(f"Configuration issue: {issue}")
        logger.info(self.config_manager.get_settings_summary())

        settings = self.config_manager.get_quiz_settings()
        self.question_loader = QuestionLoader(settings.source_url, settings.request_timeout)
        self.quiz_controller = QuizController(self.question_loader, self.config_manager)

        # The fetch runs once in the background; widgets show a loading state meanwhile
        self._load_task = asyncio.create_task(self.load_questions())

        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    async def load_questions(self):
        """Fetch the question bank from the configured source"""
        try:
            questions = await self.question_loader.load_questions()
            logger.info(f"Question bank ready with {len(questions)} questions")
        except QuestionLoadError as e:
            logger.error(f"Question bank unavailable: {e}")

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Open the quiz in this channel")
        async def quiz_command(interaction: discord.Interaction):
            await self.handle_quiz(interaction)

        @self.tree.command(name="status", description="Show progress of the quiz in this channel")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="stop", description="Close the quiz in this channel")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        for view in self._views.values():
            view.stop()
        self._views.clear()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            embed = discord.Embed(
                title="🎯 Quiz Bot Commands",
                description="Answer multiple-choice questions one at a time, then see your score.",
                color=0x00ff00
            )
            embed.add_field(
                name="🎮 Commands",
                value=(
                    "`/quiz` - Open the quiz in this channel (restarts any open quiz)\n"
                    "`/status` - Show progress of the quiz in this channel\n"
                    "`/stop` - Close the quiz in this channel\n"
                    "`/help` - Show this message"
                ),
                inline=False
            )
            embed.add_field(
                name="🕹️ Buttons",
                value=(
                    "**A-E** choose an option, **Submit** checks it and shows the explanation, "
                    "**Pause Timer** stops the clock, **Skip** moves on without answering, "
                    "**Next**/**Finish** continue after the explanation."
                ),
                inline=False
            )
            summary = self.question_loader.get_loading_summary()
            embed.add_field(
                name="📚 Question Bank",
                value=f"{summary['state']} · {summary['question_count']} questions",
                inline=False
            )
            embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    async def handle_quiz(self, interaction: discord.Interaction):
        """Handle /quiz: open a widget and populate it when the questions arrive"""
        channel_id = interaction.channel_id

        old_view = self._views.pop(channel_id, None)
        if old_view is not None:
            old_view.stop()

        session = self.quiz_controller.open_session(channel_id)
        view = QuizView(self.quiz_controller, channel_id)
        self._views[channel_id] = view

        try:
            await interaction.response.send_message(embed=view.render(session), view=view)
            view.message = await interaction.original_response()
        except discord.HTTPException as e:
            logger.error(f"Failed to open quiz widget for channel {channel_id}: {e}")
            self._discard_widget(channel_id, view)
            return

        self.quiz_controller.set_update_listener(channel_id, view.on_tick)

        if session.is_loaded:
            return

        state = await self.question_loader.wait_until_loaded()
        if self._views.get(channel_id) is not view:
            return  # Replaced or stopped while loading
        if state is LoadState.READY:
            self.quiz_controller.populate_session(channel_id)
        await view.refresh_message()

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            progress = self.quiz_controller.get_session_progress(interaction.channel_id)
            if progress is None:
                embed = discord.Embed(
                    title="ℹ️ No Quiz Open",
                    description="There is no quiz open in this channel. Use `/quiz` to start one.",
                    color=0x6699ff
                )
                await interaction.response.send_message(embed=embed, ephemeral=True)
                return

            if not progress['loaded']:
                description = "Waiting for questions to load."
            elif progress['phase'] == Phase.FINISHED.value:
                summary = self.quiz_controller.get_quiz_summary(interaction.channel_id)
                description = (
                    f"Finished with {summary['score']} / {summary['total_questions']} "
                    f"in {quiz_state.format_time(summary['total_time'])}"
                )
            else:
                description = (
                    f"Question {progress['current_question']} of {progress['total_questions']} "
                    f"({progress['progress_percent']:.0f}%)\n"
                    f"Phase: {progress['phase']}\n"
                    f"Time on question: {quiz_state.format_time(progress['current_elapsed'])}"
                    + (" (paused)" if progress['timer_paused'] else "")
                )
            embed = discord.Embed(title="📊 Quiz Status", description=description, color=0x00ff00)
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        channel_id = interaction.channel_id
        view = self._views.get(channel_id)
        closed = self.quiz_controller.close_session(channel_id)
        if view is not None:
            self._discard_widget(channel_id, view)
        try:
            if closed:
                await interaction.response.send_message("🛑 Quiz closed.")
                if view is not None and view.message is not None:
                    await view.message.edit(view=None)
            else:
                await interaction.response.send_message(
                    "ℹ️ There is no quiz open in this channel.", ephemeral=True
                )
        except discord.HTTPException as e:
            logger.error(f"Error in stop command: {e}")

    def _discard_widget(self, channel_id: int, view: QuizView) -> None:
        view.stop()
        if self._views.get(channel_id) is view:
            del self._views[channel_id]
        if self.quiz_controller.has_session(channel_id):
            self.quiz_controller.close_session(channel_id)


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Sheet Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
