"""
Prompt Builder Service

Turns assessment, skill and conversation records into the English prompt
templates sent to the LLM, and parses the plain-text formats some of those
prompts ask for. Output language is controlled by an explicit instruction
rather than by translated templates.
"""

import re
from typing import Iterable

from app.services.llm.models import SkillSuggestion


LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
}

# Pictographs, emoticons, dingbats, flags and the joiners/selectors that glue them
EMOJI_PATTERN = re.compile(
    "["
    "\U0001F300-\U0001F5FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F700-\U0001F77F"
    "\U0001F780-\U0001F7FF"
    "\U0001F800-\U0001F8FF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA00-\U0001FAFF"
    "\U0001F1E6-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\uFE0F"
    "\u200D"
    "]+"
)

LEVEL_SEPARATOR = re.compile(r"---NIVEL---|---LEVEL---")
LEVEL_HEADER = re.compile(r"^(?:NIVEL|LEVEL)\s*\d+\s*:", re.IGNORECASE)


def get_language_name(language: str) -> str:
    return LANGUAGE_NAMES.get(language, "Spanish")


def get_language_instruction(language: str) -> str:
    """Explicit output-language line appended to every template."""
    return f"Write your entire answer in {get_language_name(language)}."


def sanitize_text(text: str) -> str:
    """Strip emoji and pictographs that some databases cannot store."""
    return EMOJI_PATTERN.sub("", text).strip()


def evaluation_fallback_message(language: str) -> str:
    """Shown to the student when the grader's answer cannot be used."""
    if language == "en":
        return "Sorry, there was an error processing your response. Please try again."
    return "Lo siento, hubo un error al procesar tu respuesta. Por favor, intenta de nuevo."


# ── Conversation grading ──────────────────────────────────────────────────────


def evaluator_system_prompt(language: str) -> str:
    return (
        "You are an expert evaluator specialized in determining student competency "
        "levels in specific skills. " + get_language_instruction(language)
    )


def compile_evaluation_prompt(
    case_text: str,
    student_reply: str,
    skills: Iterable,
    history: Iterable,
    turn_count: float,
    max_turns: int,
    language: str,
) -> str:
    """
    Build the grading prompt for one conversation turn.

    Args:
        case_text: The assessment case the student is answering
        student_reply: The message just submitted
        skills: Skill records with their ``levels`` loaded
        history: ConversationMessage records, oldest first
        turn_count: Completed student/AI exchanges so far
        max_turns: skills x questions_per_skill
        language: Output language code

    Returns:
        User prompt string
    """
    conversation_text = "\n".join(
        f"{'Student' if msg.message_type == 'student' else 'AI'}: {msg.message_text}"
        for msg in history
    )

    skill_blocks = []
    for skill in skills:
        levels_text = "\n".join(
            f"- Level ID {level.id} ({level.label}): {level.description}"
            for level in skill.levels
        )
        skill_blocks.append(
            f"Skill ID {skill.id}: {skill.name}\n"
            f"Description: {skill.description}\n"
            f"Levels:\n{levels_text}"
        )
    skills_text = "\n\n".join(skill_blocks)

    # Whole turns read better in the prompt than "1.5 of 6"
    turn_label = int(turn_count) if float(turn_count).is_integer() else turn_count

    return f"""Evaluate the student's response and determine if their competency level can be established.

EVALUATION CONTEXT:
- Case: {case_text}
- Student's response: {student_reply}
- Current turn: {turn_label} of {max_turns} maximum

SKILLS TO EVALUATE:
{skills_text}

CONVERSATION HISTORY:
{conversation_text}

INSTRUCTIONS:
1. Analyze if the student's response is sufficient to determine their competency level
2. If the level CANNOT be determined, ask for more information or clarify the response
3. If the level CAN be determined, assign the most appropriate level for each skill
4. Consider that the maximum number of turns is: {max_turns}
5. IMPORTANT: Use ONLY the exact IDs provided above for skillId and skillLevelId

RESPOND IN JSON FORMAT:
{{
  "canDetermineLevel": true/false,
  "message": "Message for the student",
  "skillResults": [
    {{
      "skillId": exact_skill_number,
      "skillLevelId": exact_level_number,
      "feedback": "Specific feedback for this skill"
    }}
  ]
}}

If canDetermineLevel is false, skillResults should be empty or not included.
If canDetermineLevel is true, it must include exactly one result for each skill.
Respond ONLY with the JSON, no markdown and no additional explanations.
The "message" and "feedback" values must be written in {get_language_name(language)}."""


# ── Skill design helpers ──────────────────────────────────────────────────────


def compile_skill_suggest_prompts(
    suggestion_type: str, context: str, level: str, language: str, idea: str
) -> tuple[str, str]:
    """Return (system, user) prompts for skill name/description suggestions."""
    if suggestion_type == "name":
        system_prompt = (
            "You are an expert educational designer. Suggest up to 4 concise, clear, and "
            "context-appropriate skill names for a curriculum. Each name should be suitable "
            "for the given instructional level and educational context, and in the requested "
            "language. Return only the list of names, separated by newlines."
        )
        user_prompt = f"Rough idea: {idea}"
    else:
        system_prompt = (
            "You are an expert educational designer. Suggest up to 4 clear, "
            "context-appropriate skill descriptions for a curriculum. Each description should "
            "explain what having the skill implies and how it is visible in a person, "
            "considering the educational context and level. Return only the list of "
            "descriptions, separated by newlines."
        )
        user_prompt = f"General idea: {idea}"

    user_prompt += (
        f"\nInstructional level: {level}"
        f"\nEducational context: {context}"
        f"\nOutput language: {get_language_name(language)}"
    )
    return system_prompt, user_prompt


def parse_suggestion_lines(text: str, limit: int = 4) -> list[str]:
    """One suggestion per non-empty line, list markers removed."""
    lines = []
    for raw in text.splitlines():
        line = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", raw).strip()
        if line:
            lines.append(line)
    return lines[:limit]


def compile_domain_skills_prompt(domain_name: str, domain_description: str, language: str) -> str:
    return f"""You are an expert educational designer specialized in identifying relevant skills for academic domains. Your task is to suggest 10 specific skills that would be appropriate for the given domain.

DOMAIN: "{domain_name}"
DOMAIN DESCRIPTION: "{domain_description}"

INSTRUCTIONS:
1. Generate exactly 10 relevant skills for this domain
2. Each skill must include a clear name and specific description
3. Skills should be specific and measurable
4. Consider different levels of complexity
5. Avoid skills that are too generic or vague
6. Skills should be relevant for the educational context

RESPONSE FORMAT:
Respond with exactly 10 skills in the following format, keeping the NAME and DESCRIPTION labels in English:
NAME: [skill name]
DESCRIPTION: [specific skill description]
---
NAME: [skill name]
DESCRIPTION: [specific skill description]
---
... (continue for all 10 skills)

{get_language_instruction(language)}"""


def parse_domain_skill_suggestions(text: str, limit: int = 10) -> list[SkillSuggestion]:
    """Parse ``NAME:/DESCRIPTION:`` blocks separated by ``---``."""
    suggestions = []
    for part in text.split("---"):
        part = part.strip()
        if not part:
            continue
        name_match = re.search(r"(?:NOMBRE|NAME):\s*(.+?)(?:\n|$)", part, re.IGNORECASE)
        description_match = re.search(
            r"(?:DESCRIPCI[OÓ]N|DESCRIPTION):\s*(.+?)(?:\n|$)", part, re.IGNORECASE
        )
        if name_match and description_match:
            suggestions.append(
                SkillSuggestion(
                    name=name_match.group(1).strip(),
                    description=description_match.group(1).strip(),
                )
            )
    return suggestions[:limit]


def compile_skill_levels_prompt(
    skill_name: str, skill_description: str, level_settings: list, language: str
) -> str:
    """Prompt for one behavioural description per proficiency level."""
    level_info = "\n".join(
        f'LEVEL {level.order} - "{level.label}": {level.description}' for level in level_settings
    )
    count = len(level_settings)

    return f"""You are an expert educational designer specialized in creating skill mastery level descriptions. Your task is to generate specific student behavior descriptions for ALL levels of a skill, considering the complete progression.

SKILL: "{skill_name}"
SKILL DESCRIPTION: "{skill_description}"

LEVELS TO DESCRIBE:
{level_info}

CRITICAL INSTRUCTIONS:
1. Generate EXACTLY {count} descriptions, one for each level
2. Each level must EXPLICITLY build upon the previous and prepare for the next
3. AVOID repetitions, overlaps, or gaps between levels
4. Maintain consistent terminology across all levels
5. Each description must be specific to this skill, not generic
6. Include specific behaviors, evidence of learning, typical limitations, and the type of support needed

RESPONSE FORMAT:
Respond with exactly {count} descriptions, separated by "---LEVEL---".
Example structure:
LEVEL 1: [complete description]
---LEVEL---
LEVEL 2: [description that references level 1 and prepares for level 3]

{get_language_instruction(language)}"""


def parse_level_descriptions(text: str) -> list[str]:
    """Split on the level separator and drop ``LEVEL n:`` headers."""
    descriptions = []
    for part in LEVEL_SEPARATOR.split(text):
        part = LEVEL_HEADER.sub("", part.strip()).strip()
        if part:
            descriptions.append(part)
    return descriptions


# ── Case authoring ────────────────────────────────────────────────────────────


def case_designer_system_prompt(language: str) -> str:
    return (
        "You are an expert educational designer specialized in creating realistic and "
        "challenging assessment cases. " + get_language_instruction(language)
    )


def compile_case_prompt(
    assessment_description: str,
    difficulty_level: str,
    educational_level: str,
    evaluation_context: str,
    skills: list[dict],
    language: str,
) -> str:
    """
    Prompt for a student-facing case text.

    ``skills`` items carry name, description and domain_name.
    """
    skills_text = "\n".join(
        f"- {s['name']} ({s.get('domain_name') or 'General'}): {s['description']}" for s in skills
    )

    return f"""Create an assessment case written DIRECTLY for students who will read it during their assessment.

EVALUATION CONTEXT:
{assessment_description}

DIFFICULTY LEVEL: {difficulty_level}
EDUCATIONAL LEVEL: {educational_level}
EDUCATIONAL CONTEXT: {evaluation_context}

SKILLS TO EVALUATE:
{skills_text}

IMPORTANT INSTRUCTIONS:
- The text must be written DIRECTLY for students, not for teachers
- Use language appropriate for the educational level ({educational_level})
- Adapt complexity to the difficulty level ({difficulty_level})
- DO NOT include notes for teachers, meta-descriptions, or explanatory messages
- Include cultural and contextual elements based on: {evaluation_context}

CASE STRUCTURE:
1. **Main scenario**: A realistic situation that students can understand
2. **Case development**: Relevant details that present appropriate challenges
3. **Reflection questions**: At the end, include 3-5 open questions written directly for the student that require deep reflection on the skills

FORMAT:
- Use **bold** to emphasize important elements
- Use *italics* for technical terms or key concepts
- Do not use emojis
- Maximum 8192 characters

The case must be specific to the skills listed above and not generic.
{get_language_instruction(language)}"""


def case_analyst_system_prompt(language: str) -> str:
    return (
        "You are an expert educational analyst specialized in creating comprehensive and "
        "diverse solutions for assessment cases, considering multiple approaches and "
        "perspectives. " + get_language_instruction(language)
    )


def compile_case_solution_prompt(
    case_text: str,
    assessment_description: str,
    difficulty_level: str,
    educational_level: str,
    evaluation_context: str,
    skills: list[dict],
    language: str,
) -> str:
    """
    Prompt for a reference solution grounded in retrieved source excerpts.

    ``skills`` items carry name, description, domain_name and ``excerpts``:
    a list of retrieved chunk dicts (content, source_title, source_author, page).
    An empty list marks a skill without processed sources.
    """
    skill_blocks = []
    for skill in skills:
        header = f"- {skill['name']} ({skill.get('domain_name') or 'General'}): {skill['description']}"
        excerpts = skill.get("excerpts") or []
        if not excerpts:
            skill_blocks.append(
                f"{header}\n  Reference material: none processed for this skill; rely on established knowledge of the field."
            )
            continue
        excerpt_text = "\n".join(
            f'  [{i}] "{e["source_title"]}" by {e.get("source_author") or "Unknown Author"} '
            f'(page {e["page"]}):\n  {e["content"]}'
            for i, e in enumerate(excerpts, 1)
        )
        skill_blocks.append(f"{header}\n  Reference material:\n{excerpt_text}")
    skills_text = "\n\n".join(skill_blocks)

    return f"""Create a comprehensive and diverse solution for the assessment case provided.

GOAL OF THE SOLUTION:
The solution is a complete reference that includes multiple approaches and perspectives, since different students may tackle the problem differently. It must demonstrate mastery of the evaluated skills and draw on the reference material.

ASSESSMENT INFORMATION:
Description: {assessment_description}
Difficulty level: {difficulty_level}
Educational level: {educational_level}
Evaluation context: {evaluation_context}

EVALUATED SKILLS AND REFERENCE MATERIAL:
{skills_text}

CASE TO SOLVE:
{case_text}

INSTRUCTIONS:
- Cover every aspect of the case from multiple perspectives
- Demonstrate mastery of all evaluated skills
- Base the content on the reference material when it is available
- Keep it appropriate for the educational level ({educational_level}) and difficulty ({difficulty_level})
- DO NOT mention the sources, authors or readings in the solution text

STRUCTURE:
**1. Comprehensive analysis of the problem**
**2. Multiple solution approaches** (a conventional approach and at least two alternatives, with strengths and weaknesses)
**3. Application of the key concepts** (theoretical, practical and methodological)
**4. Comparative analysis of the approaches**
**5. Evaluation criteria** (essential elements of any valid answer, and signs of deep versus superficial understanding for each skill)
**6. Limitations and ethical considerations**

{get_language_instruction(language)}"""


def compile_questions_prompt(
    context: str,
    main_scenario: str,
    skills: list[dict],
    difficulty_level: str,
    educational_level: str,
    language: str,
) -> str:
    skills_text = "\n".join(
        f"- {s['name']} ({s.get('domain_name') or 'General'}): {s['description']}" for s in skills
    )

    return f"""Generate 5-8 thoughtful reflection questions based on the following case scenario.

CASE CONTEXT:
{context}

MAIN SCENARIO:
{main_scenario}

SKILLS TO EVALUATE ({len(skills)} skills):
{skills_text}

DIFFICULTY LEVEL: {difficulty_level}
EDUCATIONAL LEVEL: {educational_level}

INSTRUCTIONS:
- Questions must require deep reflection and critical thinking
- Adapt them to the educational level ({educational_level}) and the difficulty ({difficulty_level})
- Write them directly for students
- Avoid yes/no questions
- Cover all the skills being evaluated
- Number each question (1., 2., 3., etc.)
- Maximum 1000 characters total

{get_language_instruction(language)}"""


# ── Source-grounded feedback ──────────────────────────────────────────────────

RAG_FEEDBACK_SYSTEM_PROMPT = (
    "You are an expert educational assessor who provides constructive, "
    "source-based feedback to students."
)


def compile_rag_feedback_prompt(
    question: str,
    student_response: str,
    chunks: list[dict],
    context: str | None = None,
    language: str = "en",
) -> str:
    source_context = "\n\n".join(
        f'Source {i}: "{c["source_title"]}" by {c.get("source_author") or "Unknown Author"} '
        f'(Page {c["page"]})\nContent: {c["content"]}'
        for i, c in enumerate(chunks, 1)
    )
    context_line = f"Context: {context}\n" if context else ""

    return f"""Based on the provided source materials, evaluate the student's response and provide constructive feedback.

Question: {question}
{context_line}
Student Response: {student_response}

Relevant Source Materials:
{source_context}

Instructions:
1. Analyze the student's response against the source materials
2. Provide specific, constructive feedback that references the sources
3. Identify areas of strength and areas for improvement
4. Suggest specific ways to enhance the response based on the source content
5. Use a supportive, encouraging tone
6. Keep feedback concise but comprehensive (200-300 words)

{get_language_instruction(language)}"""
