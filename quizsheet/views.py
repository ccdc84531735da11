"""
Discord rendering for the quiz widget: embeds plus the button view.
"""
import asyncio
import logging
from typing import Optional

import discord

from .models import LoadState, Phase, QuizSession
from . import quiz_state

logger = logging.getLogger(__name__)

COLOR_ACTIVE = 0x3b82f6
COLOR_PAUSED = 0xffaa00
COLOR_CORRECT = 0x00ff00
COLOR_INCORRECT = 0xff0000
COLOR_INFO = 0x6699ff

DESCRIPTION_LIMIT = 4096
FIELD_LIMIT = 1024


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 1] + "…"


def progress_bar(percent: float, width: int = 20) -> str:
    """Text progress bar, e.g. ``██████░░░░``."""
    filled = int(round(width * max(0, min(percent, 100)) / 100))
    return "█" * filled + "░" * (width - filled)


def build_loading_embed() -> discord.Embed:
    return discord.Embed(
        title="⏳ Loading questions...",
        description="Fetching the question bank, hang tight.",
        color=COLOR_INFO
    )


def build_load_error_embed(error: Optional[str]) -> discord.Embed:
    embed = discord.Embed(
        title="❌ Could not load questions",
        description="The question source could not be loaded. Try again later.",
        color=COLOR_INCORRECT
    )
    if error:
        embed.add_field(
            name="Reason",
            value=f"```\n{_truncate(error, FIELD_LIMIT - 8)}\n```",
            inline=False
        )
    return embed


def build_question_embed(session: QuizSession) -> discord.Embed:
    """Render the current question, timer, progress and, when reviewing, the explanation."""
    question = session.current_question
    percent = quiz_state.progress_percent(session)
    reviewing = session.phase is Phase.REVIEWING

    if reviewing:
        color = COLOR_CORRECT if quiz_state.is_correct(session, session.current_index) else COLOR_INCORRECT
    elif session.timer_paused:
        color = COLOR_PAUSED
    else:
        color = COLOR_ACTIVE

    lines = []
    if question.description:
        lines.append(f"*{question.description}*")
    if question.prompt:
        lines.append(f"**{question.prompt}**")
    lines.append("")
    for label, text in question.visible_options():
        marker = "🔘" if session.selected_label == label else "⚪"
        lines.append(f"{marker} **{label.upper()}.** {text}")

    embed = discord.Embed(
        title=f"Question {session.current_index + 1} of {session.total_questions}",
        description=_truncate("\n".join(lines), DESCRIPTION_LIMIT),
        color=color
    )
    embed.add_field(
        name="📊 Progress",
        value=f"`{progress_bar(percent)}` {percent:.0f}%",
        inline=True
    )
    timer_value = quiz_state.format_time(session.current_elapsed)
    if session.timer_paused:
        timer_value += " (paused)"
    embed.add_field(name="⏱ Time", value=timer_value, inline=True)

    if reviewing:
        verdict = quiz_state.explanation_verdict(session)
        icon = "✅" if quiz_state.is_correct(session, session.current_index) else "❌"
        embed.add_field(
            name=f"{icon} {verdict}",
            value=_truncate(f"**Explanation:** {question.explanation}", FIELD_LIMIT),
            inline=False
        )
        embed.set_footer(text="Press Finish to see your score" if session.is_last_question else "Press Next to continue")
    else:
        embed.set_footer(text="Pick an option, then Submit. Skip moves on without answering.")
    return embed


def build_summary_embed(session: QuizSession) -> discord.Embed:
    """Render the final score, total time and a line per question."""
    score = quiz_state.score(session)
    total = quiz_state.total_time(session)

    lines = [
        f"**Score: {score} / {session.total_questions}**",
        f"Total Time: {quiz_state.format_time(total)}",
        ""
    ]
    for i, line in enumerate(quiz_state.review_lines(session)):
        taken = session.elapsed_times[i] if i < len(session.elapsed_times) else 0
        if line == "Correct":
            line = f"✅ {line}"
        elif line != "Skipped":
            line = f"❌ {line}"
        lines.append(f"**Question {i + 1}** · Time Taken: {quiz_state.format_time(taken)} · {line}")

    embed = discord.Embed(
        title="🎉 Quiz Complete",
        description=_truncate("\n".join(lines), DESCRIPTION_LIMIT),
        color=COLOR_CORRECT
    )
    embed.set_footer(text="Press Restart Quiz to try again")
    return embed


def build_embed(session: QuizSession, load_state: LoadState, load_error: Optional[str] = None) -> discord.Embed:
    """Pick the embed for the widget's current situation."""
    if not session.is_loaded:
        if load_state is LoadState.FAILED:
            return build_load_error_embed(load_error)
        return build_loading_embed()
    if session.phase is Phase.FINISHED:
        return build_summary_embed(session)
    return build_question_embed(session)


class ActionButton(discord.ui.Button):
    """Button that forwards its action to the owning QuizView."""

    def __init__(self, action: str, label: str, style: discord.ButtonStyle, row: int, value: Optional[str] = None):
        super().__init__(label=label, style=style, row=row)
        self.action = action
        self.value = value

    async def callback(self, interaction: discord.Interaction):
        await self.view.handle_action(interaction, self.action, self.value)


class QuizView(discord.ui.View):
    """Button set for one channel's quiz widget."""

    def __init__(self, controller, channel_id: int):
        super().__init__(timeout=None)
        self.controller = controller
        self.channel_id = channel_id
        self.message: Optional[discord.Message] = None
        # Tick edits and interaction edits must not interleave
        self._edit_lock = asyncio.Lock()
        self.refresh_items()

    @property
    def session(self) -> Optional[QuizSession]:
        return self.controller.get_session(self.channel_id)

    def render(self, session: Optional[QuizSession] = None) -> discord.Embed:
        session = session or self.session or QuizSession.empty()
        loader = self.controller.question_loader
        return build_embed(session, loader.load_state, loader.load_error)

    def refresh_items(self, session: Optional[QuizSession] = None) -> None:
        """Rebuild the buttons for the session's phase."""
        session = session or self.session
        self.clear_items()
        if session is None or not session.is_loaded:
            return

        if session.phase is Phase.FINISHED:
            self.add_item(ActionButton("restart", "Restart Quiz", discord.ButtonStyle.primary, row=0))
            return

        if session.phase is Phase.ANSWERING:
            for label, _ in session.current_question.visible_options():
                style = (
                    discord.ButtonStyle.success
                    if session.selected_label == label
                    else discord.ButtonStyle.secondary
                )
                self.add_item(ActionButton("select", label.upper(), style, row=0, value=label))
            self.add_item(ActionButton("submit", "Submit", discord.ButtonStyle.primary, row=1))
            pause_label = "Resume Timer" if session.timer_paused else "Pause Timer"
            self.add_item(ActionButton("pause", pause_label, discord.ButtonStyle.secondary, row=1))
            self.add_item(ActionButton("skip", "Skip", discord.ButtonStyle.secondary, row=1))
        else:
            next_label = "Finish" if session.is_last_question else "Next"
            self.add_item(ActionButton("next", next_label, discord.ButtonStyle.success, row=1))

    async def handle_action(self, interaction: discord.Interaction, action: str, value: Optional[str] = None):
        """Apply a button press and re-render the widget."""
        async with self._edit_lock:
            if action == "select":
                result = self.controller.select_option(self.channel_id, value)
            elif action == "submit":
                result = self.controller.submit_answer(self.channel_id)
            elif action == "pause":
                result = self.controller.toggle_pause(self.channel_id)
            elif action in ("skip", "next"):
                result = self.controller.advance_question(self.channel_id)
            elif action == "restart":
                result = self.controller.restart_quiz(self.channel_id)
            else:
                raise ValueError(f"Unknown quiz action: {action}")

            if not result['success']:
                await interaction.response.send_message(result['user_message'], ephemeral=True)
                return

            session = result['session']
            self.refresh_items(session)
            await interaction.response.edit_message(embed=self.render(session), view=self)

    async def on_tick(self, session: QuizSession) -> None:
        """Show the new elapsed time on the widget message.

        The snapshot handed in can be outdated once the lock is free, so the
        latest session is rendered instead, and only while still answering.
        """
        async with self._edit_lock:
            session = self.session
            if self.message is None or session is None or session.phase is not Phase.ANSWERING:
                return
            try:
                await self.message.edit(embed=self.render(session))
            except discord.HTTPException as e:
                logger.error(f"Failed to update timer for channel {self.channel_id}: {e}")

    async def refresh_message(self) -> None:
        """Re-render buttons and embed on the widget message."""
        if self.message is None:
            return
        async with self._edit_lock:
            self.refresh_items()
            try:
                await self.message.edit(embed=self.render(), view=self)
            except discord.HTTPException as e:
                logger.error(f"Failed to refresh quiz widget for channel {self.channel_id}: {e}")

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item) -> None:
        logger.error(f"Quiz widget error in channel {self.channel_id}: {error}", exc_info=error)
        try:
            if interaction.response.is_done():
                await interaction.followup.send("❌ Something went wrong with the quiz.", ephemeral=True)
            else:
                await interaction.response.send_message("❌ Something went wrong with the quiz.", ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send quiz widget error message")
