"""
Narration scripts for plays.

Templates carry two kinds of markup: ``[pause]`` tokens (micro, small,
medium, large, xlarge) interpreted by the performance system, and
``{token}`` placeholders filled here from the play roster and the match
context. Placeholders without a value are left as written.
"""

from __future__ import annotations

import random
import re
from typing import TYPE_CHECKING

from simon.logic.constants import DEFAULT_SUB_VARIANT
from simon.logic.enums import CeremonyType, RelaxActivity, RoundType
from simon.logic.types import CeremonyPlay, RelaxPlay, RoundPlay

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from simon.logic.config_loader import ConfigLoader
    from simon.logic.types import Scripts, SelectionContext

_TOKEN_PATTERN = re.compile(r"\{(\w+)\}")

# category path -> template lines; categories are extended with add_custom_templates()
TEMPLATES: dict[str, list[str]] = {
    "round_intros.duel": [
        "Alright everyone, time for a DUEL!",
        "Two players, one challenge, let's go!",
        "It's time for a head-to-head battle!",
        "Get ready for an epic showdown!",
    ],
    "round_intros.team": [
        "Teams, assemble! It's battle time!",
        "Time for some teamwork, everyone!",
        "Teams, get ready to compete!",
        "Let's see which team reigns supreme!",
    ],
    "round_intros.freeForAll": [
        "EVERYONE plays in this one!",
        "All players, get ready!",
        "It's every player for themselves!",
        "Free for all madness coming up!",
    ],
    "round_intros.asymmetric": [
        "Time for something special!",
        "This one's a little different...",
        "Get ready for a unique challenge!",
        "Here comes a twist!",
    ],
    "during_play.general": [
        "Keep going!",
        "You're doing great!",
        "30 seconds left!",
        "Almost there!",
        "Don't give up!",
    ],
    "during_play.intense": [
        "FASTER! FASTER!",
        "This is INTENSE!",
        "Push yourself!",
        "INCREDIBLE effort!",
    ],
    "during_play.silly": [
        "This is hilarious!",
        "I can't stop laughing!",
        "Pure chaos!",
        "Beautiful madness!",
    ],
    "outros.general": [
        "Incredible effort from everyone!",
        "That was absolutely fantastic!",
        "Give yourselves a round of applause!",
        "You all played amazingly!",
    ],
    "outros.duel": [
        "What a battle!",
        "Both players gave it their all!",
        "That was an epic showdown!",
    ],
    "outros.team": [
        "Fantastic teamwork!",
        "Both teams were incredible!",
        "That's how you work together!",
    ],
    "ceremony.opening.welcome": [
        "WELCOME WELCOME WELCOME to Simon Says!",
        "Hello everyone! Ready for some FUN?",
        "Greetings players! Time for Simon Says!",
    ],
    "ceremony.opening.explanation": [
        "We'll play {totalRounds} amazing rounds of games!",
        "Get ready for {duration} minutes of pure fun!",
        "Here's how it works: I'll tell you what to play, and you play it!",
    ],
    "ceremony.opening.team_building": [
        "{team1}, let me hear your battle cry!",
        "Teams, show me your victory dance!",
        "Each team, create your secret handshake!",
    ],
    "ceremony.closing.celebration": [
        "THAT WAS AMAZING! Everyone jump and cheer!",
        "You've all been INCREDIBLE players!",
        "What an absolutely fantastic match!",
    ],
    "ceremony.closing.thanks": [
        "Thank you all for bringing such amazing energy!",
        "You've made this so much fun!",
        "Until next time, keep playing!",
    ],
    "relax.intro": [
        "Time to catch our breath!",
        "Let's take a moment to relax.",
        "Everyone, let's calm down for a bit.",
    ],
    "relax.activities.stretching": [
        "Reach up high... [large] and down to your toes!",
        "Roll your shoulders back... [medium] and forward.",
        "Stretch to the left... [medium] and to the right!",
    ],
    "relax.activities.breathing": [
        "Take a deep breath in... [large] and out...",
        "Breathe in through your nose... [medium] out through your mouth.",
        "Feel that oxygen filling your lungs!",
    ],
    "relax.activities.groupActivity": [
        "Everyone form a circle!",
        "Find a partner and give them a high five!",
        "Let's do the wave!",
    ],
    "relax.outro": [
        "Feeling refreshed? Let's keep playing!",
        "All relaxed? Time for more games!",
        "That was nice! Ready for more action?",
    ],
}

VARIANT_REVEALS = {
    "tag": "This will be... [medium] TAG!",
    "mirror": "Time for... [medium] MIRROR MATCH!",
    "balance": "Let's test your... [medium] BALANCE!",
    "speed": "How fast can you go? [medium] SPEED CHALLENGE!",
    "relay": "It's a... [medium] RELAY RACE!",
    "capture": "Get ready for... [medium] CAPTURE THE FLAG!",
    "collective": "Everyone together for... [medium] GROUP CHALLENGE!",
    "elimination": "Last one standing in... [medium] ELIMINATION!",
    "freeze": "Don't move! It's... [medium] FREEZE TAG!",
    "infection": "Watch out! [medium] INFECTION is spreading!",
    "protector": "Defend your team in... [medium] PROTECTOR!",
    "hunter": "The hunt begins! [medium] HUNTER mode!",
}

SUB_VARIANT_REVEALS = {
    "backwards": "But wait... [small] you must go BACKWARDS!",
    "crabWalk": "Oh, and... [small] CRAB WALK ONLY!",
    "hop": "Plot twist... [small] you can only HOP!",
    "slowMotion": "Everything must be in... [small] SLOW MOTION!",
}

MODIFIER_REVEALS = {
    "blindfold": "AND {player1}... [large] you'll be BLINDFOLDED!",
    "teamChant": "While you play... [medium] your team must CHANT your name!",
    "animalNoises": "Everyone must make... [medium] ANIMAL NOISES!",
    "sillyVoices": "Use your SILLIEST voice... [medium] the whole time!",
    "countdown": "You have exactly... [medium] 30 SECONDS!",
}

COUNTDOWNS = {
    "standard": "Ready... [small] Set... [small] GO!",
    "dramatic": "3 [micro] 2 [micro] 1 [micro] GO GO GO!",
    "silly": "Ready... [small] Spaghetti... [small] RAVIOLI!",
    "quick": "GO!",
}

ENDINGS = {
    "standard": "TIME'S UP! [medium] Everyone freeze!",
    "dramatic": "AND... [large] STOP! [medium] Nobody move!",
    "celebration": "AMAZING! [medium] That was incredible!",
}

VARIANT_RULES = {
    "tag": "{player1} must tag {player2}!",
    "mirror": "{player2} must copy everything {player1} does!",
    "balance": "Hold your balance position as long as possible!",
    "speed": "Complete the challenge as fast as you can!",
    "relay": "Pass the baton to your teammates!",
    "capture": "Steal the flag from the other team!",
    "freeze": "If you're tagged, freeze until a teammate saves you!",
    "infection": "If you're tagged, you become infected too!",
}

SUB_VARIANT_RULES = {
    "backwards": "Remember, only move backwards!",
    "crabWalk": "Stay in crab walk position the whole time!",
    "hop": "Both feet must leave the ground!",
    "slowMotion": "Everything in slow motion - no rushing!",
}

MODIFIER_RULES = {
    "blindfold": "{team1} can shout directions!",
    "teamChant": "Teams, keep chanting!",
    "animalNoises": "I better hear those animal sounds!",
    "sillyVoices": "Normal voices = disqualified!",
    "countdown": "You have exactly 30 seconds!",
}

SILLY_MODIFIERS = frozenset({"sillyVoices", "animalNoises"})
DURING_PLAY_MIN_DURATION = 60
DURING_PLAY_LINES = 3
RELAX_INSTRUCTION_LINES = 3


def replace_tokens(text: str, tokens: Mapping[str, str]) -> str:
    return _TOKEN_PATTERN.sub(lambda match: tokens.get(match.group(1), match.group(0)), text)


class ScriptAssembler:
    def __init__(self, config: ConfigLoader | None = None, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()  # noqa: S311
        self._custom_templates: dict[str, list[str]] = {}

    def assemble_scripts(self, play: RoundPlay | CeremonyPlay | RelaxPlay, context: SelectionContext) -> Scripts:
        if isinstance(play, RoundPlay):
            return self.assemble_round_scripts(play, context)
        if isinstance(play, CeremonyPlay):
            return self.assemble_ceremony_scripts(play, context)
        if isinstance(play, RelaxPlay):
            return self.assemble_relax_scripts(play, context)
        raise ValueError(f"Unknown block type: {getattr(play, 'block_type', type(play).__name__)}")

    def assemble_round_scripts(self, play: RoundPlay, context: SelectionContext) -> Scripts:
        scripts: Scripts = {"intro": self.select_script(self.get_templates(f"round_intros.{play.round_type}"))}

        if play.round_type != RoundType.FREE_FOR_ALL:
            scripts["player_select"] = self.build_player_select_script(play)

        scripts["variant_reveal"] = VARIANT_REVEALS.get(play.variant, f"Time for... [medium] {play.variant.upper()}!")
        if play.sub_variant != DEFAULT_SUB_VARIANT:
            scripts["sub_variant_reveal"] = SUB_VARIANT_REVEALS.get(
                play.sub_variant,
                f"And you must... [small] {play.sub_variant.upper()}!",
            )
        if play.modifier:
            scripts["modifier_reveal"] = MODIFIER_REVEALS.get(
                play.modifier,
                f"Plus... [medium] {play.modifier.upper()}!",
            )

        scripts["rules"] = self.build_rules_script(play)
        if self.needs_positioning(play):
            scripts["positioning"] = self.build_positioning_script(play)

        scripts["countdown"] = COUNTDOWNS[self.get_countdown_style(play, context)]
        if play.duration > DURING_PLAY_MIN_DURATION:
            style = self.get_encouragement_style(play, context)
            scripts["during"] = self.select_multiple_scripts(
                self.get_templates(f"during_play.{style}"),
                DURING_PLAY_LINES,
            )

        scripts["ending"] = ENDINGS["celebration" if context.is_last_round else "standard"]
        outro_category = play.round_type if play.round_type in (RoundType.DUEL, RoundType.TEAM) else "general"
        scripts["outro"] = self.select_script(self.get_templates(f"outros.{outro_category}"))

        return self.process_tokens(scripts, play, context)

    def assemble_ceremony_scripts(self, play: CeremonyPlay, context: SelectionContext) -> Scripts:
        if play.ceremony_type == CeremonyType.OPENING:
            parts = ("welcome", "explanation", "team_building")
        else:
            parts = ("celebration", "thanks")
        scripts: Scripts = {
            part: self.select_script(self.get_templates(f"ceremony.{play.ceremony_type}.{part}")) for part in parts
        }
        return self.process_tokens(scripts, play, context)

    def assemble_relax_scripts(self, play: RelaxPlay, context: SelectionContext) -> Scripts:
        activity_lines = self.get_templates(f"relax.activities.{play.activity}") or self.get_templates(
            f"relax.activities.{RelaxActivity.STRETCHING}",
        )
        scripts: Scripts = {
            "intro": self.select_script(self.get_templates("relax.intro")),
            "instructions": self.select_multiple_scripts(activity_lines, RELAX_INSTRUCTION_LINES),
            "outro": self.select_script(self.get_templates("relax.outro")),
        }
        return self.process_tokens(scripts, play, context)

    # --- Script builders ---

    def build_player_select_script(self, play: RoundPlay) -> str:
        if play.round_type == RoundType.DUEL:
            return "{player1} from {team1}, step forward! [small] And facing them... [medium] {player2} from {team2}!"
        if play.round_type == RoundType.TEAM:
            return "{team1}, you're up! [small] Versus... [medium] {team2}!"
        if play.round_type == RoundType.ASYMMETRIC:
            if play.variant == "infection":
                return "{infected} from {team1}, you're infected! [medium] Everyone else... RUN!"
            return "Special players selected! [small] Listen carefully for your role!"
        return "Players selected!"

    def build_rules_script(self, play: RoundPlay) -> str:
        rules = [VARIANT_RULES.get(play.variant, "Follow the rules!")]
        if play.sub_variant != DEFAULT_SUB_VARIANT:
            rules.append(SUB_VARIANT_RULES.get(play.sub_variant, ""))
        if play.modifier:
            rules.append(MODIFIER_RULES.get(play.modifier, ""))
        return " [small] ".join(rule for rule in rules if rule)

    def build_positioning_script(self, play: RoundPlay) -> str:
        if play.round_type == RoundType.DUEL:
            return "Take your positions... [medium] {player1} in the center, {player2} at the edge!"
        if play.round_type == RoundType.TEAM:
            return "Teams, line up on opposite sides!"
        return "Everyone find your starting position!"

    def needs_positioning(self, play: RoundPlay) -> bool:
        return play.round_type in (RoundType.DUEL, RoundType.TEAM) or play.variant == "relay"

    def get_countdown_style(self, play: RoundPlay, context: SelectionContext) -> str:
        if context.is_last_round:
            return "dramatic"
        if play.modifier == "countdown":
            return "quick"
        if self._personality_style(context) == "silly":
            return "silly"
        return "standard"

    def get_encouragement_style(self, play: RoundPlay, context: SelectionContext) -> str:
        if play.modifier in SILLY_MODIFIERS:
            return "silly"
        if play.difficulty >= 4 or context.is_late_match:  # noqa: PLR2004
            return "intense"
        return "general"

    # --- Template selection ---

    def select_script(self, options: Sequence[str]) -> str:
        if not options:
            return ""
        return self._rng.choice(list(options))

    def select_multiple_scripts(self, options: Sequence[str], count: int) -> list[str]:
        """Up to count lines without repetition."""
        return self._rng.sample(list(options), min(count, len(options)))

    def add_custom_templates(self, category: str, templates: Sequence[str]) -> None:
        self._custom_templates.setdefault(category, []).extend(templates)

    def get_templates(self, category: str) -> list[str]:
        return [*TEMPLATES.get(category, []), *self._custom_templates.get(category, [])]

    # --- Tokens ---

    def process_tokens(
        self,
        scripts: Scripts,
        play: RoundPlay | CeremonyPlay | RelaxPlay,
        context: SelectionContext,
    ) -> Scripts:
        tokens = self.build_token_map(play, context)
        processed: Scripts = {}
        for key, value in scripts.items():
            if isinstance(value, str):
                processed[key] = replace_tokens(value, tokens)
            else:
                processed[key] = [replace_tokens(line, tokens) for line in value]
        return processed

    def build_token_map(self, play: RoundPlay | CeremonyPlay | RelaxPlay, context: SelectionContext) -> dict[str, str]:
        team_names = context.team_names
        default_team1 = team_names[0] if team_names else "Team 1"
        default_team2 = team_names[1] if len(team_names) > 1 else "Team 2"
        tokens: dict[str, str] = {"team1": default_team1, "team2": default_team2}

        if isinstance(play, RoundPlay):
            roster = play.players
            if "player1" in roster or "player2" in roster:
                for slot, team_token in (("player1", "team1"), ("player2", "team2")):
                    members = roster.get(slot)
                    if members:
                        tokens[slot] = members[0].name
                        tokens[team_token] = self._team_name(members[0].team, context) or tokens[team_token]
            elif play.round_type == RoundType.ASYMMETRIC:
                first_role = next(iter(roster.values()), [])
                if first_role:
                    tokens["team1"] = self._team_name(first_role[0].team, context) or default_team1

            for role, members in roster.items():
                if role in ("player1", "player2", "all") or role.startswith("team"):
                    continue
                if members:
                    tokens[role] = " and ".join(member.name for member in members)

        tokens["roundNumber"] = str(context.current_round or 1)
        tokens["totalRounds"] = str(context.total_rounds or 10)
        tokens["duration"] = str(round((context.match_duration or 1800) / 60))
        tokens["everyone"] = "everyone"
        tokens["teams"] = "all teams"
        return tokens

    def _team_name(self, team_id: str | None, context: SelectionContext) -> str | None:
        if team_id is None:
            return None
        return context.team_names_by_id.get(team_id, team_id)

    def _personality_style(self, context: SelectionContext) -> str:
        if self._config is not None:
            return self._config.get("scripts.personality.style", context.personality_style)
        return context.personality_style
