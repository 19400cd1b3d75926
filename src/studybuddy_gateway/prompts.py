"""System prompt templates for study and coding sessions.

A session starts with the system prompt built here followed by a short user
greeting; later turns reuse the same system prompt at the head of the
conversation.
"""

from typing import Literal

from pydantic import BaseModel, field_validator

from studybuddy_gateway.models import ChatMessage

Level = Literal["beginner", "intermediate", "advanced", "expert"]
StudySessionType = Literal["lesson", "quiz", "practice", "review"]
CodingSessionType = Literal["lesson", "debug", "build", "review"]
TechStack = Literal["nextjs-ts", "nextjs-js", "react-ts", "react-js", "python", "node-ts", "node-js"]

STUDY_GREETING = "Hello! I'm ready to start learning."
CODING_GREETING = "Hi! I'm ready to start this coding session."

TECH_STACKS: dict[str, tuple[str, str]] = {
    "nextjs-ts": (
        "Next.js + TypeScript",
        "Next.js 16 with Turbopack, App Router, React 19.2, TypeScript 5.9, Server Actions and Tailwind CSS v4",
    ),
    "nextjs-js": (
        "Next.js + JavaScript",
        "Next.js 16 with Turbopack, App Router, React 19.2, modern JavaScript and Tailwind CSS v4",
    ),
    "react-ts": (
        "React + TypeScript",
        "React 19.2 with TypeScript 5.9, Hooks, Server Components and modern best practices",
    ),
    "react-js": (
        "React + JavaScript",
        "React 19.2 with modern JavaScript, Hooks and functional components",
    ),
    "python": (
        "Python",
        "Python 3.12+ with modern syntax, type hints and best practices",
    ),
    "node-ts": (
        "Node.js + TypeScript",
        "Node.js with TypeScript 5.9, ES modules and modern async patterns",
    ),
    "node-js": (
        "Node.js + JavaScript",
        "Node.js with modern JavaScript, ES modules and async/await",
    ),
}


class _TopicConfig(BaseModel):
    topic: str

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("topic must not be blank")
        return v


class StudySessionConfig(_TopicConfig):
    details: str = ""
    level: Level = "beginner"
    session_type: StudySessionType = "lesson"
    duration: Literal[10, 15, 30, 45, 60] = 15


class CodingSessionConfig(_TopicConfig):
    session_type: CodingSessionType = "lesson"
    tech_stack: TechStack = "nextjs-ts"


# ------------------------------------------------------------------
# Study sessions
# ------------------------------------------------------------------


def study_instructions(session_type: str, level: str, duration: int) -> str:
    if session_type == "lesson":
        return (
            f"Provide a structured {duration}-minute lesson on the topic. Start with core concepts and build "
            f"progressively. Use examples and check for understanding. Adjust complexity for {level} level."
        )
    if session_type == "quiz":
        return (
            f"Create a diagnostic quiz with questions appropriate for {level} level. Ask one question at a time, "
            f"provide feedback and explain answers. Cover key concepts within {duration} minutes."
        )
    if session_type == "practice":
        return (
            "Guide the student through practice exercises. Provide problems, hints and detailed solutions. "
            f"Match difficulty to {level} level and fit within {duration} minutes."
        )
    if session_type == "review":
        return (
            "Help the student review and reinforce their knowledge. Ask what they've learned, identify gaps and "
            f"provide clarifications. Keep it conversational and within {duration} minutes."
        )
    return f"Provide educational support on the topic for a {level} level student in a {duration}-minute session."


def build_study_prompt(config: StudySessionConfig) -> str:
    return f"""You are Studdy Buddy, an expert tutor helping a student learn about "{config.topic}".

Study Session Configuration:
- Topic: {config.topic}
- Additional Context: {config.details.strip() or "None provided"}
- Student Level: {config.level}
- Session Type: {config.session_type}
- Duration: {config.duration} minutes

Your role:
{study_instructions(config.session_type, config.level, config.duration)}

Keep responses concise and focused. Adapt to the student's level and time constraints."""


# ------------------------------------------------------------------
# Coding sessions
# ------------------------------------------------------------------

_CODING_INSTRUCTIONS = {
    "lesson": (
        "Teach the coding topic systematically. Start with core concepts, provide clear code examples and "
        "highlight best practices."
    ),
    "debug": (
        "Help debug code issues. Ask to see the code and errors, identify root causes, explain the fix and "
        "suggest prevention strategies."
    ),
    "build": (
        "Guide step-by-step project building. Understand requirements, design architecture and implement "
        "features incrementally with explanations."
    ),
    "review": (
        "Review code and provide constructive feedback. Analyze structure, identify improvements and teach "
        "best practices through examples."
    ),
}


def build_coding_prompt(config: CodingSessionConfig) -> str:
    _, stack_context = TECH_STACKS[config.tech_stack]
    instructions = _CODING_INSTRUCTIONS.get(config.session_type, "Provide expert coding instruction and support")
    return f"""You are an expert coding instructor specializing in modern web development.

**Session Context:**
Topic: {config.topic}
Session Type: {config.session_type}
Tech Stack: {stack_context}

**Your Approach:**
{instructions}

**Important Guidelines:**
- Use the latest features and best practices
- Write clean, well-commented code examples
- Include type annotations when using TypeScript
- Use functional components and modern patterns
- Explain concepts clearly with practical examples
- Format all code in markdown code blocks with language tags
- Be concise and adaptive - gauge complexity from user responses

Let's begin!"""


def opening_messages(system_prompt: str, greeting: str) -> list[ChatMessage]:
    """The first request of a session: the system prompt plus a greeting."""
    return [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=greeting),
    ]
