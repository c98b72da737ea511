"""Prompt templates for the cooking coach.

Every coaching action sends the same two-part prompt: a system prompt tuned
to the user's skill level, and a user prompt made of the session context,
the type-specific instruction and (for questions) the recent conversation.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

HISTORY_TURNS_IN_PROMPT = 3


class AIContext(BaseModel):
    """Everything the provider needs to know about the session at call time."""
    session_id: str
    user_id: str
    recipe_id: str
    recipe_name: str
    current_step: int = 0
    total_steps: Optional[int] = None
    skill_level: str = "beginner"
    interaction_type: str = "general"
    user_history: list[dict] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


def system_prompt(ctx: AIContext) -> str:
    return f"""You are CookMate AI Coach, an expert cooking assistant. Your role is to:

1. Guide users through recipes step-by-step with clear, encouraging instructions
2. Adapt your communication style to the user's skill level ({ctx.skill_level})
3. Provide helpful tips and troubleshooting advice
4. Answer cooking questions with practical, actionable advice
5. Maintain a supportive, patient, and enthusiastic tone

Guidelines:
- Keep responses concise but informative
- Use simple language for beginners, more technical terms for experts
- Always prioritize food safety
- Encourage users and celebrate their progress
- Provide alternatives when possible
- Ask clarifying questions when needed

Current interaction type: {ctx.interaction_type}"""


def contextual_prompt(instruction: str, ctx: AIContext) -> str:
    prompt = f"""
Context:
- Recipe: {ctx.recipe_name or 'Unknown'}
- Current Step: {ctx.current_step or 0} of {ctx.total_steps or 0}
- User Skill Level: {ctx.skill_level or 'beginner'}
- Interaction Type: {ctx.interaction_type or 'general'}

User Input: {instruction}

Please provide a helpful, encouraging response as a cooking coach."""

    if ctx.extra:
        details = "\n".join(f"- {k}: {v}" for k, v in ctx.extra.items() if v is not None)
        if details:
            prompt += f"\n\nAdditional Details:\n{details}"

    if ctx.user_history:
        turns = ctx.user_history[-HISTORY_TURNS_IN_PROMPT:]
        convo = "\n".join(f"User: {h.get('user_input')}\nCoach: {h.get('coach_response')}" for h in turns)
        prompt += f"\n\nRecent Conversation:\n{convo}"

    return prompt


# --- Type-specific instructions ---

def question_prompt(payload: dict, ctx: AIContext) -> str:
    return f"""User question: "{payload['question']}"

Please provide a helpful answer related to cooking this recipe."""


def step_guidance_prompt(payload: dict, ctx: AIContext) -> str:
    step = payload.get("step_data") or {}
    ingredients = step.get("ingredients") or []
    instruction = step.get("instruction") or f"Step {payload['step_number']} of {ctx.recipe_name}"
    return f"""Please provide step-by-step guidance for: "{instruction}"

Additional context:
- Ingredients needed: {', '.join(ingredients) if ingredients else 'Not specified'}
- Estimated time: {step.get('estimated_time') or 'Not specified'}
- Difficulty: {step.get('difficulty') or 'Not specified'}"""


def tip_prompt(payload: dict, ctx: AIContext) -> str:
    return f"""Provide a helpful cooking tip for step {ctx.current_step} of {ctx.recipe_name}.
Make it appropriate for a {ctx.skill_level} cook."""


def troubleshooting_prompt(payload: dict, ctx: AIContext) -> str:
    return f"""The user is experiencing this cooking issue: "{payload['issue']}"

Please provide troubleshooting advice and solutions."""


def substitution_prompt(payload: dict, ctx: AIContext) -> str:
    return f"""The user needs a substitution for: "{payload['ingredient']}"

Please suggest appropriate alternatives and how to use them."""


def encouragement_prompt(payload: dict, ctx: AIContext) -> str:
    progress = round(ctx.current_step / ctx.total_steps * 100) if ctx.total_steps else 0
    return f"""Generate encouraging words for a user who is {progress}% through cooking {ctx.recipe_name}.
Keep it brief and motivating."""


PromptBuilder = Callable[[dict, AIContext], str]
