from types import SimpleNamespace

from app.models.attempt import MessageType
from app.services.prompts import (
    compile_domain_skills_prompt,
    compile_evaluation_prompt,
    compile_rag_feedback_prompt,
    compile_skill_levels_prompt,
    compile_skill_suggest_prompts,
    evaluation_fallback_message,
    get_language_instruction,
    parse_domain_skill_suggestions,
    parse_level_descriptions,
    parse_suggestion_lines,
    sanitize_text,
)


def test_sanitize_text_strips_emoji():
    assert sanitize_text("Great job 🎉👍 keep going ✅") == "Great job  keep going"
    assert sanitize_text("  plain text  ") == "plain text"


def test_language_instruction_defaults_to_spanish():
    assert "English" in get_language_instruction("en")
    assert "Spanish" in get_language_instruction("fr")


def test_fallback_message_is_localised():
    assert evaluation_fallback_message("en").startswith("Sorry")
    assert evaluation_fallback_message("es").startswith("Lo siento")


def test_suggest_prompts_switch_on_type():
    system_prompt, user_prompt = compile_skill_suggest_prompts("name", "high school", "basic", "en", "argue")
    assert "skill names" in system_prompt
    assert user_prompt.startswith("Rough idea: argue")
    assert "Output language: English" in user_prompt

    system_prompt, user_prompt = compile_skill_suggest_prompts("description", "", "", "es", "argue")
    assert "descriptions" in system_prompt
    assert user_prompt.startswith("General idea: argue")


def test_parse_suggestion_lines_strips_markers_and_limits():
    text = "1. Critical reading\n- Argument mapping\n\n* Source evaluation\n2) Synthesis\nExtra one"
    assert parse_suggestion_lines(text) == [
        "Critical reading",
        "Argument mapping",
        "Source evaluation",
        "Synthesis",
    ]


def test_parse_domain_skill_suggestions():
    text = (
        "NAME: Data cleaning\nDESCRIPTION: Removes errors from datasets\n---\n"
        "NOMBRE: Visualización\nDESCRIPCIÓN: Presenta datos en gráficos\n---\n"
        "NAME: Missing description\n---\n"
    )
    suggestions = parse_domain_skill_suggestions(text)
    assert [(s.name, s.description) for s in suggestions] == [
        ("Data cleaning", "Removes errors from datasets"),
        ("Visualización", "Presenta datos en gráficos"),
    ]


def test_domain_prompt_asks_for_ten_skills():
    prompt = compile_domain_skills_prompt("Statistics", "Numbers", "en")
    assert "exactly 10" in prompt
    assert '"Statistics"' in prompt


def test_skill_levels_prompt_and_parser():
    levels = [
        SimpleNamespace(order=1, label="Beginner", description="Starts"),
        SimpleNamespace(order=2, label="Expert", description="Masters"),
    ]
    prompt = compile_skill_levels_prompt("Writing", "Writes essays", levels, "en")
    assert 'LEVEL 1 - "Beginner": Starts' in prompt
    assert "EXACTLY 2 descriptions" in prompt

    parsed = parse_level_descriptions("LEVEL 1: Needs help\n---LEVEL---\nNIVEL 2: Works alone\n---LEVEL---\n")
    assert parsed == ["Needs help", "Works alone"]


def test_evaluation_prompt_lists_ids_and_history():
    skill = SimpleNamespace(
        id=3,
        name="Photosynthesis",
        description="Explains plant food",
        levels=[SimpleNamespace(id=30, label="Beginner", description="Names parts")],
    )
    history = [
        SimpleNamespace(message_type=MessageType.AI, message_text="What do plants need?"),
        SimpleNamespace(message_type=MessageType.STUDENT, message_text="Light"),
    ]

    prompt = compile_evaluation_prompt(
        case_text="Pale plants",
        student_reply="Light",
        skills=[skill],
        history=history,
        turn_count=1.0,
        max_turns=4,
        language="en",
    )

    assert "Skill ID 3: Photosynthesis" in prompt
    assert "- Level ID 30 (Beginner): Names parts" in prompt
    assert "AI: What do plants need?\nStudent: Light" in prompt
    assert "Current turn: 1 of 4 maximum" in prompt
    assert "written in English" in prompt


def test_evaluation_prompt_keeps_half_turns():
    prompt = compile_evaluation_prompt("case", "reply", [], [], 1.5, 2, "es")
    assert "Current turn: 1.5 of 2 maximum" in prompt


def test_rag_feedback_prompt_cites_sources():
    prompt = compile_rag_feedback_prompt(
        "Why are leaves green?",
        "Because of chlorophyll",
        [{"source_title": "Botany", "source_author": None, "page": 4, "content": "Chlorophyll absorbs red light"}],
    )
    assert 'Source 1: "Botany" by Unknown Author' in prompt
    assert "(Page 4)" in prompt
    assert "Because of chlorophyll" in prompt
