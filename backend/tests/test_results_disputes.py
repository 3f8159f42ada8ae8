from datetime import datetime, timedelta

import pytest

from app.models import Attempt, AttemptStatus, Dispute, DisputeStatus, Result, User, UserRole


@pytest.fixture
def graded(world, seeder):
    """A completed attempt with one Competent result."""
    attempt = seeder.add(
        Attempt(
            assessment_id=world.assessment.id,
            user_id=world.student.id,
            status=AttemptStatus.COMPLETED,
            final_grade=7.0,
            completed_at=datetime.utcnow() - timedelta(days=1),
        )
    )
    result = seeder.add(
        Result(
            attempt_id=attempt.id,
            skill_id=world.skill.id,
            skill_level_id=world.levels[1].id,
            grade=7.0,
            feedback="Fine",
        )
    )
    return attempt, result


def test_staff_attempt_views(client, world, headers, graded):
    attempt, _ = graded
    listing = client.get("/attempts", params={"assessment_id": world.assessment.id}, headers=headers(world.teacher))
    assert listing.status_code == 200
    item = listing.json()["items"][0]
    assert item["student_name"] == "Sam Tester"
    assert item["status"] == "Completed"

    assert client.get("/attempts", headers=headers(world.outsider)).json()["total"] == 0
    assert client.get(f"/attempts/{attempt.id}", headers=headers(world.outsider)).status_code == 404

    detail = client.get(f"/attempts/{attempt.id}", headers=headers(world.clerk)).json()
    assert detail["conversation"] == []

    results = client.get(f"/attempts/{attempt.id}/results", headers=headers(world.teacher)).json()
    assert results["final_grade"] == 7.0


def test_regrade_result(client, world, headers, graded, seeder):
    attempt, result = graded
    expert = world.levels[2]

    response = client.put(
        f"/results/{result.id}",
        json={"skill_level_id": expert.id, "feedback": "Reviewed"},
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    assert response.json()["grade"] == 10.0
    assert response.json()["level_label"] == "Expert"
    assert seeder.get(Attempt, attempt.id).final_grade == 10.0

    response = client.put(
        f"/results/{result.id}",
        json={"skill_level_id": world.second_levels[0].id, "feedback": "Wrong skill"},
        headers=headers(world.teacher),
    )
    assert response.status_code == 400


def test_dispute_lifecycle(client, world, headers, graded):
    _, result = graded

    response = client.get(f"/disputes/result/{result.id}", headers=headers(world.student))
    assert response.status_code == 200
    assert response.json() is None

    response = client.post(
        "/disputes", json={"result_id": result.id, "student_argument": "I explained light well"},
        headers=headers(world.student),
    )
    assert response.status_code == 201
    dispute = response.json()
    assert dispute["status"] == "Pending"

    duplicate = client.post(
        "/disputes", json={"result_id": result.id, "student_argument": "Again"}, headers=headers(world.student)
    )
    assert duplicate.status_code == 409

    response = client.put(
        f"/disputes/{dispute['id']}",
        json={"teacher_argument": "Upheld after review", "status": "Solved"},
        headers=headers(world.teacher),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Solved"

    assert client.put(
        f"/disputes/{dispute['id']}",
        json={"teacher_argument": "Not mine", "status": "Rejected"},
        headers=headers(world.outsider),
    ).status_code == 404

    staff_view = client.get(f"/attempts/{result.attempt_id}/disputes", headers=headers(world.teacher)).json()
    assert [(d["skill_name"], d["status"]) for d in staff_view] == [("Photosynthesis", "Solved")]

    student_view = client.get(f"/student/attempts/{result.attempt_id}/results", headers=headers(world.student)).json()
    assert student_view["results"][0]["dispute"]["teacher_argument"] == "Upheld after review"


def test_dispute_after_deadline(client, world, headers, graded, seeder):
    attempt, result = graded
    stored = seeder.get(Attempt, attempt.id)
    stored.completed_at = datetime.utcnow() - timedelta(days=30)
    seeder.add(stored)

    response = client.post(
        "/disputes", json={"result_id": result.id, "student_argument": "Late"}, headers=headers(world.student)
    )
    assert response.status_code == 400


def test_cannot_dispute_someone_elses_result(client, world, headers, graded, seeder, password_hash):
    _, result = graded
    other = seeder.add(
        User(
            email="peer@example.com",
            hashed_password=password_hash,
            given_name="Pat",
            role=UserRole.STUDENT,
            institution_id=world.institution.id,
        )
    )
    response = client.post(
        "/disputes", json={"result_id": result.id, "student_argument": "Mine"}, headers=headers(other)
    )
    assert response.status_code == 404


def test_admin_deletes_attempt(client, world, headers, graded, seeder):
    attempt, result = graded
    seeder.add(Dispute(result_id=result.id, status=DisputeStatus.PENDING, student_argument="x"))

    assert client.delete(f"/attempts/{attempt.id}", headers=headers(world.teacher)).status_code == 403
    assert client.delete(f"/attempts/{attempt.id}", headers=headers(world.admin)).status_code == 204
    assert seeder.get(Attempt, attempt.id) is None
