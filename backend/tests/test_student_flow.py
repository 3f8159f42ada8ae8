import json

from sqlalchemy import select

from app.models import ConversationMessage, User, UserRole


def evaluation(can_determine, message, skill_results=()):
    return json.dumps(
        {"canDetermineLevel": can_determine, "message": message, "skillResults": list(skill_results)}
    )


def start_attempt(client, world, headers):
    response = client.post(f"/student/assessments/{world.assessment.id}/attempt", headers=headers(world.student))
    assert response.status_code == 200
    return response.json()


def test_assigned_assessments_are_listed(client, world, headers):
    response = client.get("/student/assessments", headers=headers(world.student))
    assert response.status_code == 200
    body = response.json()
    assert [a["id"] for a in body["active"]] == [world.assessment.id]
    assert body["active"][0]["skill_names"] == ["Photosynthesis"]
    assert body["active"][0]["teacher_name"] is None
    assert body["completed"] == []

    detail = client.get(f"/student/assessments/{world.assessment.id}", headers=headers(world.student))
    assert detail.json()["case_text"].startswith("A farmer")


def test_unassigned_student_sees_nothing(client, world, headers, seeder, password_hash):
    loner = seeder.add(
        User(
            email="loner@example.com",
            hashed_password=password_hash,
            given_name="Lee",
            role=UserRole.STUDENT,
            institution_id=world.institution.id,
        )
    )
    assert client.get("/student/assessments", headers=headers(loner)).json()["active"] == []
    response = client.post(f"/student/assessments/{world.assessment.id}/attempt", headers=headers(loner))
    assert response.status_code == 404


def test_staff_cannot_use_student_routes(client, world, headers):
    assert client.get("/student/assessments", headers=headers(world.teacher)).status_code == 403


def test_attempt_is_reused(client, world, headers):
    first = start_attempt(client, world, headers)
    second = start_attempt(client, world, headers)
    assert first["id"] == second["id"]
    assert first["status"] == "In progress"


def test_full_conversation_until_graded(client, world, headers, fake_provider):
    attempt = start_attempt(client, world, headers)
    url = f"/student/attempts/{attempt['id']}/conversation"

    fake_provider.queue(evaluation(False, "Why are the plants pale?"))
    response = client.post(url, json={"message": "They need help"}, headers=headers(world.student))
    assert response.status_code == 200
    body = response.json()
    assert body["attempt_status"] == "In progress"
    assert body["ai_response"]["message"] == "Why are the plants pale?"

    competent = world.levels[1]
    fake_provider.queue(
        evaluation(
            True,
            "Thanks, we are done.",
            [{"skillId": world.skill.id, "skillLevelId": competent.id, "feedback": "Good reasoning"}],
        )
    )
    response = client.post(url, json={"message": "Not enough light"}, headers=headers(world.student))
    body = response.json()
    assert body["attempt_status"] == "Completed"
    assert body["final_grade"] == 7.0

    # The grader saw the whole exchange including the new reply
    last_prompt = fake_provider.calls[-1]["messages"][0]["content"]
    assert "Student: They need help\nAI: Why are the plants pale?\nStudent: Not enough light" in last_prompt
    assert "Current turn: 1.5 of 2 maximum" in last_prompt

    conversation = client.get(url, headers=headers(world.student)).json()["conversation"]
    assert [m["message_type"] for m in conversation] == ["student", "ai", "student", "ai"]

    response = client.post(url, json={"message": "More"}, headers=headers(world.student))
    assert response.status_code == 400

    results = client.get(f"/student/attempts/{attempt['id']}/results", headers=headers(world.student)).json()
    assert results["max_score"] == 10
    assert results["can_dispute"] is True
    assert [(r["skill_id"], r["level_label"], r["grade"]) for r in results["results"]] == [
        (world.skill.id, "Competent", 7.0)
    ]

    listing = client.get("/student/assessments", headers=headers(world.student)).json()
    assert [a["id"] for a in listing["completed"]] == [world.assessment.id]

    by_assessment = client.get(f"/student/assessments/{world.assessment.id}/results", headers=headers(world.student))
    assert by_assessment.json()["attempt_id"] == attempt["id"]


def test_unparseable_grader_output_falls_back(client, world, headers, fake_provider):
    attempt = start_attempt(client, world, headers)
    fake_provider.queue("no json here", "still none")

    response = client.post(
        f"/student/attempts/{attempt['id']}/conversation", json={"message": "Hello"}, headers=headers(world.student)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ai_response"]["canDetermineLevel"] is False
    assert body["ai_response"]["message"].startswith("Sorry")
    assert body["attempt_status"] == "In progress"


def test_invalid_grades_are_rejected(client, world, headers, fake_provider, seeder):
    attempt = start_attempt(client, world, headers)
    wrong_level = world.second_levels[0]
    fake_provider.queue(
        evaluation(True, "Done", [{"skillId": world.skill.id, "skillLevelId": wrong_level.id}])
    )

    response = client.post(
        f"/student/attempts/{attempt['id']}/conversation", json={"message": "Hi"}, headers=headers(world.student)
    )
    assert response.status_code == 502

    messages = seeder.scalars(select(ConversationMessage).where(ConversationMessage.attempt_id == attempt["id"]))
    assert [m.message_type.value for m in messages] == ["student"]


def test_llm_outage_is_reported(client, world, headers):
    attempt = start_attempt(client, world, headers)
    response = client.post(
        f"/student/attempts/{attempt['id']}/conversation", json={"message": "Hi"}, headers=headers(world.student)
    )
    assert response.status_code == 503


def test_other_students_attempts_are_hidden(client, world, headers, seeder, password_hash):
    attempt = start_attempt(client, world, headers)
    other = seeder.add(
        User(
            email="peer@example.com",
            hashed_password=password_hash,
            given_name="Pat",
            role=UserRole.STUDENT,
            institution_id=world.institution.id,
        )
    )
    response = client.get(f"/student/attempts/{attempt['id']}/conversation", headers=headers(other))
    assert response.status_code == 404
