import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.database import Base, get_session_factory
from app.core.security import create_access_token, hash_password
from app.main import app
from app.models import (
    Assessment,
    AssessmentStatus,
    Domain,
    Group,
    Institution,
    Skill,
    SkillLevel,
    SkillLevelSetting,
    User,
    UserRole,
    assessments_groups,
    assessments_skills,
    users_groups,
)
from app.services.background_jobs import JobRegistry, get_job_registry
from app.services.llm.base import LLMError, LLMProvider
from app.services.llm.orchestrator import LLMOrchestrator, get_orchestrator
from app.services.rag.embeddings import Embedder, get_embedder
from app.services.storage import LocalStorage, get_storage

PASSWORD = "password123"

# Tiny bag-of-words space so similarity in tests follows topic words
KEYWORDS = ["photosynthesis", "light", "energy", "plant", "water", "history", "war", "empire"]


class FakeProvider(LLMProvider):
    """Replays queued answers; raises LLMError when nothing is queued."""

    provider_name = "fake"

    def __init__(self):
        self.responses: list = []
        self.calls: list[dict] = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def chat(self, system_prompt, messages, model, max_output_tokens=2000, temperature=0.7):
        self.calls.append({"system_prompt": system_prompt, "messages": messages, "model": model})
        if not self.responses:
            raise LLMError("No fake response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class KeywordEmbeddings:
    def __init__(self):
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    @staticmethod
    def vector(text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in KEYWORDS] + [0.01]

    async def aembed_documents(self, texts):
        self.document_calls.append(list(texts))
        return [self.vector(t) for t in texts]

    async def aembed_query(self, text):
        self.query_calls.append(text)
        return self.vector(text)


def run(coro):
    return asyncio.run(coro)


class Seeder:
    """Synchronous helpers for writing and reading rows around API calls."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def add(self, *objects):
        async def _add():
            async with self.session_factory() as db:
                db.add_all(objects)
                await db.commit()
                for obj in objects:
                    await db.refresh(obj)

        run(_add())
        return objects[0] if len(objects) == 1 else objects

    def execute(self, stmt):
        async def _execute():
            async with self.session_factory() as db:
                await db.execute(stmt)
                await db.commit()

        run(_execute())

    def get(self, model, obj_id):
        async def _get():
            async with self.session_factory() as db:
                return await db.get(model, obj_id)

        return run(_get())

    def scalars(self, stmt):
        async def _scalars():
            async with self.session_factory() as db:
                return list((await db.execute(stmt)).scalars().all())

        return run(_scalars())


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)

    async def _create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    run(_create_schema())
    yield async_sessionmaker(engine, expire_on_commit=False)
    run(engine.dispose())


@pytest.fixture
def seeder(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_embeddings():
    return KeywordEmbeddings()


@pytest.fixture
def embedder(fake_embeddings):
    return Embedder(embeddings=fake_embeddings, batch_size=10)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def job_registry():
    return JobRegistry()


@pytest.fixture
def client(session_factory, fake_provider, embedder, storage, job_registry):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_orchestrator] = lambda: LLMOrchestrator(provider=fake_provider)
    app.dependency_overrides[get_embedder] = lambda: embedder
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_job_registry] = lambda: job_registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    user_id = user if isinstance(user, int) else user.id
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def world(seeder, password_hash):
    """
    One institution with a three-level template, one user per role, a group
    holding the student, a domain with two skills and an open assessment.
    """
    institution = seeder.add(Institution(name="North High", scoring_scale=10))
    other_institution = seeder.add(Institution(name="South High", scoring_scale=10))

    settings = seeder.add(
        SkillLevelSetting(institution_id=institution.id, order=1, label="Beginner", lower_limit=0, upper_limit=4),
        SkillLevelSetting(institution_id=institution.id, order=2, label="Competent", lower_limit=4, upper_limit=7),
        SkillLevelSetting(institution_id=institution.id, order=3, label="Expert", lower_limit=7, upper_limit=10),
    )

    def make_user(email, role, institution_id, given_name):
        return User(
            email=email,
            hashed_password=password_hash,
            given_name=given_name,
            family_name="Tester",
            role=role,
            institution_id=institution_id,
            language_preference="en",
        )

    admin = seeder.add(make_user("admin@example.com", UserRole.ADMIN, None, "Ada"))
    teacher = seeder.add(make_user("teacher@example.com", UserRole.TEACHER, institution.id, "Tom"))
    clerk = seeder.add(make_user("clerk@example.com", UserRole.CLERK, institution.id, "Cleo"))
    student = seeder.add(make_user("student@example.com", UserRole.STUDENT, institution.id, "Sam"))
    outsider = seeder.add(make_user("outsider@example.com", UserRole.TEACHER, other_institution.id, "Otto"))

    group = seeder.add(Group(institution_id=institution.id, name="Class A"))
    seeder.execute(insert(users_groups).values(user_id=student.id, group_id=group.id))

    domain = seeder.add(Domain(institution_id=institution.id, name="Biology"))
    skill = seeder.add(Skill(domain_id=domain.id, name="Photosynthesis", description="Explains how plants make food"))
    second_skill = seeder.add(Skill(domain_id=domain.id, name="Cell biology", description="Describes cell parts"))

    levels = seeder.add(
        SkillLevel(skill_id=skill.id, order=1, label="Beginner", standard=4),
        SkillLevel(skill_id=skill.id, order=2, label="Competent", standard=7),
        SkillLevel(skill_id=skill.id, order=3, label="Expert", standard=10),
    )
    second_levels = seeder.add(
        SkillLevel(skill_id=second_skill.id, order=1, label="Beginner", standard=4),
        SkillLevel(skill_id=second_skill.id, order=2, label="Competent", standard=7),
        SkillLevel(skill_id=second_skill.id, order=3, label="Expert", standard=10),
    )

    now = datetime.utcnow()
    assessment = seeder.add(
        Assessment(
            institution_id=institution.id,
            teacher_id=teacher.id,
            name="Plants quiz",
            description="How plants live",
            difficulty_level="medium",
            educational_level="secondary",
            output_language="en",
            evaluation_context="Biology class",
            case_text="A farmer notices her greenhouse plants are pale.",
            questions_per_skill=2,
            available_from=now - timedelta(days=1),
            available_until=now + timedelta(days=7),
            dispute_period=5,
            status=AssessmentStatus.ACTIVE,
        )
    )
    seeder.execute(insert(assessments_skills).values(assessment_id=assessment.id, skill_id=skill.id))
    seeder.execute(insert(assessments_groups).values(assessment_id=assessment.id, group_id=group.id))

    return SimpleNamespace(
        institution=institution,
        other_institution=other_institution,
        level_settings=list(settings),
        admin=admin,
        teacher=teacher,
        clerk=clerk,
        student=student,
        outsider=outsider,
        group=group,
        domain=domain,
        skill=skill,
        second_skill=second_skill,
        levels=list(levels),
        second_levels=list(second_levels),
        assessment=assessment,
    )
