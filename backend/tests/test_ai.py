from sqlalchemy import insert

from app.models import Source, skills_sources
from app.models.source import ProcessingStatus
from app.services.rag.embeddings import ChunkMetadata, EmbeddingChunk, dump_chunks

from conftest import KeywordEmbeddings


def add_processed_source(seeder, skill_id, title, passages):
    source = seeder.add(Source(title=title, authors="Author", processing_status=ProcessingStatus.COMPLETED))
    chunks = [
        EmbeddingChunk(
            id=f"{source.id}_{page}_0_0",
            content=text,
            embedding=KeywordEmbeddings.vector(text),
            metadata=ChunkMetadata(source_id=source.id, page=page, section_type="body", chunk_index=0),
        )
        for page, text in passages
    ]
    source.content_embeddings = dump_chunks(chunks)
    seeder.add(source)
    seeder.execute(insert(skills_sources).values(skill_id=skill_id, source_id=source.id))
    return source


def test_skill_suggest(client, world, headers, fake_provider):
    fake_provider.queue("1. Critical thinking\n2. Data literacy\n3. Argumentation\n4. Synthesis\n5. Extra")
    response = client.post(
        "/ai/skill-suggest",
        json={"type": "name", "idea": "reasoning", "context": "college", "level": "basic", "language": "en"},
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    assert response.json()["suggestions"] == ["Critical thinking", "Data literacy", "Argumentation", "Synthesis"]


def test_students_cannot_use_authoring_helpers(client, world, headers):
    response = client.post("/ai/skill-suggest", json={"type": "name", "idea": "x"}, headers=headers(world.student))
    assert response.status_code == 403


def test_domain_skill_suggest(client, world, headers, fake_provider):
    fake_provider.queue("NAME: Titration\nDESCRIPTION: Measures concentration\n---\nNAME: Safety\nDESCRIPTION: Lab rules")
    response = client.post(
        "/ai/domain-skill-suggest", json={"domain_name": "Chemistry"}, headers=headers(world.teacher)
    )
    assert [s["name"] for s in response.json()["skills"]] == ["Titration", "Safety"]


def test_domain_skill_suggest_unparseable(client, world, headers, fake_provider):
    fake_provider.queue("I cannot help with that")
    response = client.post(
        "/ai/domain-skill-suggest", json={"domain_name": "Chemistry"}, headers=headers(world.teacher)
    )
    assert response.status_code == 502


def test_skill_levels_suggest_retries_until_count_matches(client, world, headers, fake_provider):
    fake_provider.queue(
        "LEVEL 1: Only one",
        "LEVEL 1: Names parts\n---LEVEL---\nLEVEL 2: Explains process\n---LEVEL---\nLEVEL 3: Designs experiments 🧪",
    )
    response = client.post(
        "/ai/skill-levels-suggest",
        json={"skill_name": "Photosynthesis", "language": "en"},
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    levels = response.json()["levels"]
    assert [(l["order"], l["label"]) for l in levels] == [(1, "Beginner"), (2, "Competent"), (3, "Expert")]
    assert levels[2]["description"] == "Designs experiments"
    assert len(fake_provider.calls) == 2


def test_skill_levels_suggest_gives_up(client, world, headers, fake_provider):
    fake_provider.queue("LEVEL 1: one", "LEVEL 1: one", "LEVEL 1: one")
    response = client.post(
        "/ai/skill-levels-suggest",
        json={"skill_name": "Photosynthesis", "levels": [{"order": 1, "label": "A"}, {"order": 2, "label": "B"}]},
        headers=headers(world.teacher),
    )
    assert response.status_code == 502
    assert len(fake_provider.calls) == 3


def test_generate_case(client, world, headers, fake_provider):
    fake_provider.queue("A greenhouse case 🌱")
    response = client.post(
        "/ai/generate-case",
        json={
            "description": "Plants",
            "difficulty_level": "medium",
            "educational_level": "secondary",
            "evaluation_context": "Biology",
            "skill_ids": [world.skill.id],
            "output_language": "en",
        },
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    assert response.json()["case_text"] == "A greenhouse case"
    assert "Photosynthesis (Biology)" in fake_provider.calls[0]["messages"][0]["content"]


def test_generate_case_rejects_foreign_skills(client, world, headers):
    response = client.post(
        "/ai/generate-case",
        json={
            "description": "Plants",
            "difficulty_level": "medium",
            "educational_level": "secondary",
            "evaluation_context": "Biology",
            "skill_ids": [world.skill.id],
        },
        headers=headers(world.outsider),
    )
    assert response.status_code == 404


def test_generate_case_solution_uses_sources(client, world, headers, fake_provider, seeder):
    source = add_processed_source(
        seeder,
        world.skill.id,
        "Botany",
        [(3, "Photosynthesis turns light energy into sugar"), (9, "The history of the empire")],
    )
    fake_provider.queue("Reference solution")

    response = client.post(
        "/ai/generate-case-solution",
        json={
            "case_text": "Pale plants get little light for photosynthesis",
            "description": "Plants",
            "difficulty_level": "medium",
            "educational_level": "secondary",
            "evaluation_context": "Biology",
            "skill_ids": [world.skill.id, world.second_skill.id],
        },
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["case_solution"] == "Reference solution"
    assert body["skills_without_sources"] == [world.second_skill.id]
    assert body["sources"][0]["source_id"] == source.id
    assert body["sources"][0]["page"] == 3

    prompt = fake_provider.calls[0]["messages"][0]["content"]
    assert "Photosynthesis turns light energy into sugar" in prompt


def test_generate_questions(client, world, headers, fake_provider):
    fake_provider.queue("1. Why are the leaves pale?")
    response = client.post(
        "/ai/generate-questions",
        json={
            "context": "Greenhouse",
            "main_scenario": "Pale plants",
            "skill_ids": [world.skill.id],
            "difficulty_level": "easy",
            "educational_level": "primary",
        },
        headers=headers(world.teacher),
    )
    assert response.json()["questions"] == "1. Why are the leaves pale?"


def test_rag_feedback(client, world, headers, fake_provider, seeder, fake_embeddings):
    add_processed_source(
        seeder,
        world.skill.id,
        "Botany",
        [(1, "Plants need light energy"), (2, "Water moves through the plant"), (5, "War history")],
    )
    fake_provider.queue("  Good answer, see page 1.  ")

    response = client.post(
        "/ai/rag-feedback",
        json={"question": "What do plants need?", "student_response": "Light energy", "skill_id": world.skill.id},
        headers=headers(world.student),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["feedback"] == "Good answer, see page 1."
    assert body["sources"][0]["page"] == 1
    assert len(body["sources"]) == 3
    assert fake_embeddings.query_calls == ["What do plants need? Light energy"]


def test_rag_feedback_without_sources(client, world, headers, fake_embeddings):
    response = client.post(
        "/ai/rag-feedback",
        json={"question": "Q", "student_response": "A", "skill_id": world.skill.id},
        headers=headers(world.teacher),
    )
    assert response.status_code == 404
    assert fake_embeddings.query_calls == []


def test_ai_health(client):
    body = client.get("/ai/health").json()
    assert set(body) == {"configured", "model", "embedding_model"}


def test_models_list(client, world, headers):
    models = client.get("/models", headers=headers(world.teacher)).json()
    assert sum(1 for m in models if m["is_default"]) == 1


def test_rag_feedback_skips_unusable_sources(client, world, headers, fake_provider, seeder):
    broken = seeder.add(
        Source(title="Corrupt", processing_status=ProcessingStatus.COMPLETED, content_embeddings="{not json")
    )
    stale = seeder.add(Source(title="Old model", processing_status=ProcessingStatus.COMPLETED))
    stale.content_embeddings = dump_chunks(
        [
            EmbeddingChunk(
                id=f"{stale.id}_1_0_0",
                content="Plants need light",
                embedding=[1.0, 0.0, 0.0],
                metadata=ChunkMetadata(source_id=stale.id, page=1, section_type="body", chunk_index=0),
            )
        ]
    )
    seeder.add(stale)
    for source in (broken, stale):
        seeder.execute(insert(skills_sources).values(skill_id=world.skill.id, source_id=source.id))
    good = add_processed_source(seeder, world.skill.id, "Botany", [(3, "Plants need light energy")])
    fake_provider.queue("Right idea.")

    response = client.post(
        "/ai/rag-feedback",
        json={"question": "What do plants need?", "student_response": "Light", "skill_id": world.skill.id},
        headers=headers(world.student),
    )

    assert response.status_code == 200
    assert [s["source_id"] for s in response.json()["sources"]] == [good.id]
