from datetime import datetime, timedelta

import pytest

from app.models import Attempt, AttemptStatus


@pytest.fixture
def payload(world):
    start = datetime.utcnow() + timedelta(hours=1)
    return {
        "name": "Cells exam",
        "description": "Cell parts",
        "difficulty_level": "easy",
        "educational_level": "secondary",
        "output_language": "en",
        "evaluation_context": "Biology",
        "case_text": "A microscope shows strange cells 🔬",
        "questions_per_skill": 2,
        "available_from": start.isoformat(),
        "available_until": (start + timedelta(days=3)).isoformat(),
        "dispute_period": 3,
        "skill_ids": [world.skill.id, world.second_skill.id],
        "group_ids": [world.group.id],
    }


def test_create_assessment(client, world, headers, payload):
    response = client.post("/assessments", json=payload, headers=headers(world.teacher))
    assert response.status_code == 201
    body = response.json()
    assert body["teacher_id"] == world.teacher.id
    assert body["case_text"] == "A microscope shows strange cells"
    assert [s["id"] for s in body["skills"]] == [world.skill.id, world.second_skill.id]
    assert [g["id"] for g in body["groups"]] == [world.group.id]
    assert body["status"] == "Active"


@pytest.mark.parametrize(
    "change",
    [
        {"skill_ids": []},
        {"output_language": "fr"},
        {"dispute_period": 2},
        {"available_from": (datetime.utcnow() - timedelta(days=1)).isoformat()},
    ],
)
def test_create_assessment_validation(client, world, headers, payload, change):
    payload.update(change)
    assert client.post("/assessments", json=payload, headers=headers(world.teacher)).status_code == 400


def test_schedule_must_move_forward(client, world, headers, payload):
    payload["available_until"] = payload["available_from"]
    assert client.post("/assessments", json=payload, headers=headers(world.teacher)).status_code == 400


def test_at_most_four_skills(client, world, headers, payload):
    skill_ids = []
    for name in ["A", "B", "C", "D", "E"]:
        response = client.post(
            "/skills", json={"domain_id": world.domain.id, "name": name}, headers=headers(world.teacher)
        )
        skill_ids.append(response.json()["id"])
    payload["skill_ids"] = skill_ids
    assert client.post("/assessments", json=payload, headers=headers(world.teacher)).status_code == 400


def test_skills_from_other_institutions_rejected(client, world, headers, payload):
    assert client.post("/assessments", json=payload, headers=headers(world.outsider)).status_code == 400


def test_visibility_by_role(client, world, headers):
    teacher_view = client.get("/assessments", headers=headers(world.teacher)).json()
    assert [a["id"] for a in teacher_view["items"]] == [world.assessment.id]

    assert client.get("/assessments", headers=headers(world.clerk)).json()["total"] == 1
    assert client.get("/assessments", headers=headers(world.outsider)).json()["total"] == 0
    assert client.get(f"/assessments/{world.assessment.id}", headers=headers(world.outsider)).status_code == 404

    filtered = client.get("/assessments", params={"status": "Inactive"}, headers=headers(world.admin)).json()
    assert filtered["total"] == 0


def test_full_update_blocked_once_attempted(client, world, headers, payload, seeder):
    created = client.post("/assessments", json=payload, headers=headers(world.teacher)).json()
    payload["name"] = "Renamed"
    response = client.put(f"/assessments/{created['id']}", json=payload, headers=headers(world.teacher))
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"

    seeder.add(Attempt(assessment_id=created["id"], user_id=world.student.id, status=AttemptStatus.IN_PROGRESS))
    response = client.put(f"/assessments/{created['id']}", json=payload, headers=headers(world.teacher))
    assert response.status_code == 400
    assert client.delete(f"/assessments/{created['id']}", headers=headers(world.teacher)).status_code == 409


def test_limited_update_allowed_with_attempts(client, world, headers, seeder):
    seeder.add(Attempt(assessment_id=world.assessment.id, user_id=world.student.id, status=AttemptStatus.IN_PROGRESS))
    until = datetime.utcnow() + timedelta(days=30)
    response = client.put(
        f"/assessments/{world.assessment.id}/limited",
        json={
            "show_teacher_name": True,
            "integrity_protection": True,
            "available_until": until.isoformat(),
            "dispute_period": 10,
            "status": "Inactive",
        },
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Inactive"
    assert body["dispute_period"] == 10
    assert body["attempt_count"] == 1


def test_replace_groups(client, world, headers):
    url = f"/assessments/{world.assessment.id}/groups"
    assert client.put(url, json={"group_ids": []}, headers=headers(world.teacher)).json() == []
    response = client.put(url, json={"group_ids": [world.group.id]}, headers=headers(world.teacher))
    assert [g["id"] for g in response.json()] == [world.group.id]


def test_delete_assessment(client, world, headers, payload):
    created = client.post("/assessments", json=payload, headers=headers(world.teacher)).json()
    assert client.delete(f"/assessments/{created['id']}", headers=headers(world.teacher)).status_code == 204
    assert client.get(f"/assessments/{created['id']}", headers=headers(world.teacher)).status_code == 404
