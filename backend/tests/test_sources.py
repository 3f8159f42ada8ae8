from pathlib import Path

import fitz
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Source
from app.models.source import ProcessingStatus

PDF = "application/pdf"


def pdf_bytes(*lines):
    doc = fitz.open()
    page = doc.new_page()
    for i, line in enumerate(lines):
        page.insert_text((72, 72 + 20 * i), line)
    data = doc.tobytes()
    doc.close()
    return data


def upload(client, user_headers, skill_id=None, content=None, content_type=PDF, filename="botany.pdf"):
    data = {"title": "Botany", "authors": "Green"}
    if skill_id is not None:
        data["skill_id"] = str(skill_id)
    content = content if content is not None else pdf_bytes("PHOTOSYNTHESIS", "Plants use light energy.")
    return client.post(
        "/sources/upload",
        data=data,
        files={"file": (filename, content, content_type)},
        headers=user_headers,
    )


def test_upload_processes_and_links(client, world, headers, storage, job_registry, seeder):
    response = upload(client, headers(world.teacher), skill_id=world.skill.id)
    assert response.status_code == 201
    body = response.json()
    source_id = body["source"]["id"]
    assert body["job_id"].startswith(f"pdf_processing_{source_id}_")
    assert body["source"]["created_by"] == world.teacher.id

    # TestClient runs background tasks before returning
    job = job_registry.get(body["job_id"])
    assert job.status == "completed"
    stored = seeder.get(Source, source_id)
    assert stored.processing_status == ProcessingStatus.COMPLETED
    assert stored.content_embeddings
    assert storage.exists(stored.file_key)

    jobs = client.get(f"/sources/{source_id}/jobs", headers=headers(world.teacher)).json()
    assert [j["id"] for j in jobs] == [body["job_id"]]

    linked = client.get("/sources", params={"skill_id": world.skill.id}, headers=headers(world.teacher)).json()
    assert [s["id"] for s in linked["items"]] == [source_id]

    unlinked = client.get(
        "/sources/unlinked", params={"skill_id": world.second_skill.id}, headers=headers(world.teacher)
    ).json()
    assert [s["id"] for s in unlinked] == [source_id]

    download = client.get(f"/sources/{source_id}/download", headers=headers(world.clerk))
    assert download.status_code == 200
    assert download.content.startswith(b"%PDF")


def test_upload_rejects_other_types(client, world, headers):
    response = upload(client, headers(world.teacher), content=b"hello", content_type="text/plain", filename="a.txt")
    assert response.status_code == 400


def test_upload_rejects_empty_file(client, world, headers):
    assert upload(client, headers(world.teacher), content=b"").status_code == 400


def test_broken_pdf_marks_source_failed(client, world, headers, job_registry, seeder):
    body = upload(client, headers(world.teacher), content=b"%PDF-garbage").json()
    assert job_registry.get(body["job_id"]).status == "failed"
    assert seeder.get(Source, body["source"]["id"]).processing_status == ProcessingStatus.FAILED


def test_only_uploader_or_admin_modifies(client, world, headers, storage, seeder):
    source_id = upload(client, headers(world.teacher)).json()["source"]["id"]
    file_key = seeder.get(Source, source_id).file_key

    response = client.put(f"/sources/{source_id}", json={"title": "Mine now"}, headers=headers(world.clerk))
    assert response.status_code == 403

    response = client.put(f"/sources/{source_id}", json={"publication_year": 2020}, headers=headers(world.admin))
    assert response.status_code == 200
    assert response.json()["publication_year"] == 2020

    assert client.delete(f"/sources/{source_id}", headers=headers(world.teacher)).status_code == 204
    assert not storage.exists(file_key)
    assert client.get(f"/sources/{source_id}", headers=headers(world.teacher)).status_code == 404


def test_link_and_reprocess(client, world, headers, job_registry):
    source_id = upload(client, headers(world.teacher)).json()["source"]["id"]

    response = client.post(
        "/sources/link",
        json={"skill_id": world.second_skill.id, "source_ids": [source_id]},
        headers=headers(world.teacher),
    )
    assert [s["id"] for s in response.json()] == [source_id]

    response = client.post(f"/sources/{source_id}/reprocess", headers=headers(world.teacher))
    assert response.status_code == 202
    assert job_registry.get(response.json()["job_id"]).status == "completed"
    assert len(job_registry.jobs_for_source(source_id)) == 2


def test_failed_commit_removes_stored_file(client, world, headers, storage, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("connection lost"))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)

    response = upload(client, headers(world.teacher), skill_id=world.skill.id)

    assert response.status_code == 503
    assert list(Path(storage.base_dir).rglob("*.pdf")) == []
