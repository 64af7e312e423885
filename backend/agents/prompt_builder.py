"""
Prompt templates for both games.

Drawing game: image-from-sketch, AI guess / chat / drawing concept / doodle / vote.
Adventure:    scene image, action outcome text, canonical result (with inventory
              JSON), AI chat / action / vote.
"""
from typing import Iterable, List, Optional

from models.game import ActionResult, ChatEntry, GeneratedImage, HistoryEntry

# ── Defaults (room hosts may override the first four) ─────────────────────────

DEFAULT_IMAGE_PROMPT = (
    "Make this pictionary sketch look hyperrealistic but also stay faithful to the borders "
    "and shapes in the sketch even if it looks weird. It must look like the provided sketch! "
    "Do not modify important shapes/silhouettes in the sketch, just fill them in. "
    "Make it look like the provided guess: {guess}"
)

DEFAULT_GUESS_PROMPT = (
    "Look at this drawing from a Pictionary-style game and make one short guess of what it "
    "shows. Respond with only your guess, one to four words, nothing else."
)

DEFAULT_CHAT_PROMPT = (
    "You're playing a drawing game with friends. Look at this drawing and the chat history, "
    "then send a single casual, funny message as if you're a player. Don't guess what the "
    "drawing is. Instead, comment on the drawing process, react to other messages, or make a "
    "light joke. Respond with your only chat message and nothing else."
)

DEFAULT_PERSONALITY_PROMPT = "playful, quick-witted and a little competitive"

DRAWING_CREATION_PROMPT = (
    "Create a fun black and white Pictionary-style drawing of something simple but interesting "
    "and surprising. Make it look hand-drawn and somewhat abstract, with simple lines, no "
    "shading and minimal details, like a human would draw it when playing Pictionary."
)

ADVENTURE_PERSONALITY_FALLBACK = "friendly and helpful"

INITIAL_WORLD_DESCRIPTION = (
    "You are standing in an open field west of a white house, with a boarded front door. "
    "There is a small mailbox here."
)

_SCENE_STYLE_NOTE = (
    "The illustration should be vivid, detailed, and evocative of classic text adventure games.\n"
    "Use appropriate lighting, perspective, and composition to create an immersive scene.\n"
    "The style should be cohesive and suitable for a fantasy adventure game."
)


def format_chat_history(chat_history: Iterable[ChatEntry], count: int = 10) -> str:
    recent = list(chat_history)[-count:]
    return "\n".join(f"{entry.username or 'System'}: {entry.message}" for entry in recent)


def _persona(username: str, personality: Optional[str], history: Iterable[ChatEntry], task: str) -> str:
    return (
        f"You are {username}. Your personality: {personality or DEFAULT_PERSONALITY_PROMPT}\n\n"
        f"Recent chat history:\n{format_chat_history(history)}\n\n{task}"
    )


def _inventory_text(inventory: List[str]) -> str:
    return ", ".join(inventory) if inventory else "empty"


# ── Drawing game ──────────────────────────────────────────────────────────────

def build_image_generation_prompt(guess: str, template: Optional[str] = None) -> str:
    return (template or DEFAULT_IMAGE_PROMPT).replace("{guess}", guess)


def build_ai_guess_prompt(history, username, personality=None, guess_prompt=None) -> str:
    return _persona(username, personality, history, guess_prompt or DEFAULT_GUESS_PROMPT)


def build_ai_chat_prompt(history, username, personality=None, chat_prompt=None) -> str:
    return _persona(username, personality, history, chat_prompt or DEFAULT_CHAT_PROMPT)


def build_ai_drawing_concept_prompt(history, username, personality=None) -> str:
    return _persona(
        username, personality, history,
        "You're about to draw something in a Pictionary-style game. Based on your personality "
        "and the chat history, describe briefly what you might draw and how.",
    )


def build_ai_voting_prompt(history, username, personality, images: List[GeneratedImage]) -> str:
    options = "\n".join(
        f'{i}. Guess "{image.guess}" by {image.player_name}' for i, image in enumerate(images, 1)
    )
    task = (
        f"Here are the options to vote on:\n{options}\n\n"
        "Based on your personality and the chat history, vote for the best one by specifying "
        "the number and provide a brief reason. Format your response as "
        "'Vote: [number]\nReason: [reason]'"
    )
    return _persona(username, personality, history, task)


# ── Adventure ─────────────────────────────────────────────────────────────────

def _history_block(history: List[HistoryEntry]) -> str:
    if not history:
        return ""
    lines = [
        f"[WORLD UPDATE] {entry.content}" if entry.type == "world"
        else f"{entry.username or 'Unknown'}: {entry.content}"
        for entry in history
    ]
    return "\nRecent conversation and world updates:\n" + "\n".join(lines) + "\n"


def build_scene_image_prompt(description: str, style: str) -> str:
    return (
        f"Create a detailed {style} of the following text adventure scene:\n\n"
        f"{description}\n\n{_SCENE_STYLE_NOTE}"
    )


def build_action_image_prompt(action_description: str, style: str) -> str:
    return (
        f"Create a detailed {style} depicting this text adventure scene:\n\n"
        f"{action_description}\n\n{_SCENE_STYLE_NOTE}"
    )


def build_action_result_prompt(world, inventory, action, player_name, history) -> str:
    return (
        "You are the game master of a text adventure game. The current scene is:\n\n"
        f"{world}\n\n"
        f"The player's inventory contains: {_inventory_text(inventory)}\n"
        f"{_history_block(history)}\n"
        f'Player {player_name} performs this action: "{action}"\n\n'
        "Write a short, detailed description of the outcome of this action (2-4 sentences). "
        "Be creative, responsive to the player's input, and maintain the atmosphere of a "
        "classic text adventure. Do not use bullet points or lists, just flowing text."
    )


def build_canonical_result_prompt(world, inventory, action, player_name, history) -> str:
    return (
        "You are the game master of a collaborative text adventure game. The current scene is:\n\n"
        f"{world}\n\n"
        f"The player's inventory contains: {_inventory_text(inventory)}\n"
        f"{_history_block(history)}\n"
        f'The winning action to perform is: "{action}" (from player {player_name})\n\n'
        "Write a rich, detailed description (2-4 sentences) of the new world state. Be "
        "responsive to the player's action, maintaining the atmosphere of a classic text "
        "adventure.\n\n"
        "After writing the description, provide a structured inventory update in JSON format "
        "as follows:\n"
        '{"items_added": ["item1", "item2"], "items_removed": ["item3"]}\n\n'
        "Use empty arrays for no changes. Only include items actually added or removed."
    )


def _adventure_persona(username, personality, world) -> str:
    return (
        f"You are the AI player {username} in a text-based adventure game.\n"
        f"Your personality: {personality or ADVENTURE_PERSONALITY_FALLBACK}\n\n"
        f"Current game description: {world}\n\n"
    )


def build_adventure_chat_prompt(username, personality, world, inventory, history) -> str:
    return (
        _adventure_persona(username, personality, world)
        + f"Inventory: {_inventory_text(inventory)}\n\n"
        f"Recent chat history:\n{format_chat_history(history)}\n\n"
        "Send a brief, entertaining in-character message reacting to the adventure. Keep it "
        "under 1-2 sentences and stay in character. Don't suggest specific actions yet."
    )


def build_adventure_action_prompt(username, personality, world, inventory, history) -> str:
    return (
        _adventure_persona(username, personality, world)
        + f"Inventory: {_inventory_text(inventory)}\n\n"
        f"Recent chat history:\n{format_chat_history(history)}\n\n"
        "Based on the current situation, suggest ONE specific action to take in the game. "
        'Actions should be 2-5 words, like "open mailbox", "go north", "examine house". '
        "Respond with ONLY the action text, nothing else."
    )


def build_adventure_vote_prompt(username, personality, world, options: List[ActionResult]) -> str:
    listing = "\n".join(
        f'{i}. {result.player_name}: "{result.action_prompt}"' for i, result in enumerate(options, 1)
    )
    return (
        _adventure_persona(username, personality, world)
        + "Players have suggested different actions for the group to take next. "
        "You need to vote for one.\n\n"
        f"Available actions:\n{listing}\n\n"
        "Pick the action you think makes the most sense given the current state of the game.\n\n"
        "Format your response exactly like this:\n"
        "Vote: [action number]\n"
        "Reason: [1-2 sentence explanation for your choice]"
    )
