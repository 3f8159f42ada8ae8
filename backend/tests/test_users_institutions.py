from sqlalchemy import select

from app.models import SkillLevelSetting, User, UserRole


def new_user_payload(**overrides):
    payload = {
        "email": "new.student@example.com",
        "password": "longenough1",
        "given_name": "Nina",
        "family_name": "New",
        "role": "student",
        "language_preference": "en",
    }
    payload.update(overrides)
    return payload


def test_admin_creates_user(client, world, headers, seeder):
    response = client.post(
        "/users",
        json=new_user_payload(institution_id=world.institution.id),
        headers=headers(world.admin),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "new.student@example.com"
    assert body["role"] == "student"
    assert "hashed_password" not in body

    stored = seeder.scalars(select(User).where(User.email == "new.student@example.com"))
    assert stored[0].hashed_password != "longenough1"


def test_create_user_rejects_duplicate_email(client, world, headers):
    response = client.post(
        "/users",
        json=new_user_payload(email="teacher@example.com", institution_id=world.institution.id),
        headers=headers(world.admin),
    )
    assert response.status_code == 409


def test_non_admin_user_needs_an_institution(client, world, headers):
    response = client.post("/users", json=new_user_payload(), headers=headers(world.admin))
    assert response.status_code == 400
    assert "institution" in response.json()["detail"]


def test_create_user_validates_password_and_language(client, world, headers):
    short = client.post(
        "/users",
        json=new_user_payload(password="short", institution_id=world.institution.id),
        headers=headers(world.admin),
    )
    assert short.status_code == 400

    language = client.post(
        "/users",
        json=new_user_payload(language_preference="fr", institution_id=world.institution.id),
        headers=headers(world.admin),
    )
    assert language.status_code == 400


def test_only_admin_manages_users(client, world, headers):
    response = client.post(
        "/users",
        json=new_user_payload(institution_id=world.institution.id),
        headers=headers(world.teacher),
    )
    assert response.status_code == 403


def test_staff_listing_defaults_to_own_students(client, world, headers):
    response = client.get("/users", headers=headers(world.teacher))

    assert response.status_code == 200
    emails = [u["email"] for u in response.json()["items"]]
    assert emails == ["student@example.com"]


def test_admin_listing_filters_by_role(client, world, headers):
    response = client.get("/users", params={"role": "teacher"}, headers=headers(world.admin))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert {u["email"] for u in body["items"]} == {"teacher@example.com", "outsider@example.com"}


def test_update_user_changes_fields_and_password(client, world, headers):
    response = client.put(
        f"/users/{world.clerk.id}",
        json={"given_name": "Clara", "password": "anotherpass"},
        headers=headers(world.admin),
    )
    assert response.status_code == 200
    assert response.json()["given_name"] == "Clara"

    login = client.post("/auth/login", json={"email": "clerk@example.com", "password": "anotherpass"})
    assert login.status_code == 200


def test_update_user_rejects_taken_email(client, world, headers):
    response = client.put(
        f"/users/{world.clerk.id}",
        json={"email": "teacher@example.com"},
        headers=headers(world.admin),
    )
    assert response.status_code == 409


def test_admin_cannot_delete_self(client, world, headers):
    response = client.delete(f"/users/{world.admin.id}", headers=headers(world.admin))
    assert response.status_code == 400


def test_admin_deletes_user(client, world, headers, seeder, password_hash):
    user = seeder.add(
        User(
            email="leaving@example.com",
            hashed_password=password_hash,
            given_name="Lee",
            family_name="Leaving",
            role=UserRole.STUDENT,
            institution_id=world.institution.id,
        )
    )

    response = client.delete(f"/users/{user.id}", headers=headers(world.admin))

    assert response.status_code == 204
    assert seeder.get(User, user.id) is None
    assert client.get(f"/users/{user.id}", headers=headers(world.admin)).status_code == 404


def test_user_groups(client, world, headers):
    response = client.get(f"/users/{world.student.id}/groups", headers=headers(world.admin))

    assert response.status_code == 200
    assert [g["name"] for g in response.json()] == ["Class A"]


def test_institution_crud(client, world, headers):
    created = client.post(
        "/institutions",
        json={"name": "East High", "contact_email": "office@east.example.com"},
        headers=headers(world.admin),
    )
    assert created.status_code == 201
    institution_id = created.json()["id"]
    assert created.json()["scoring_scale"] == 10

    duplicate = client.post("/institutions", json={"name": "East High"}, headers=headers(world.admin))
    assert duplicate.status_code == 409

    updated = client.put(
        f"/institutions/{institution_id}",
        json={"description": "Eastern campus"},
        headers=headers(world.admin),
    )
    assert updated.json()["description"] == "Eastern campus"

    deleted = client.delete(f"/institutions/{institution_id}", headers=headers(world.admin))
    assert deleted.status_code == 204


def test_institution_with_users_cannot_be_deleted(client, world, headers):
    response = client.delete(f"/institutions/{world.institution.id}", headers=headers(world.admin))
    assert response.status_code == 409


def test_institution_options_are_scoped_for_staff(client, world, headers):
    staff = client.get("/institutions/list", headers=headers(world.teacher))
    admin = client.get("/institutions/list", headers=headers(world.admin))

    assert [i["name"] for i in staff.json()] == ["North High"]
    assert [i["name"] for i in admin.json()] == ["North High", "South High"]


def test_level_settings_read_and_replace(client, world, headers, seeder):
    current = client.get(
        f"/institutions/{world.institution.id}/level-settings", headers=headers(world.teacher)
    )
    assert [s["label"] for s in current.json()] == ["Beginner", "Competent", "Expert"]

    replaced = client.put(
        f"/institutions/{world.institution.id}/level-settings",
        json=[
            {"order": 2, "label": "Pass", "lower_limit": 5, "upper_limit": 10},
            {"order": 1, "label": "Fail", "lower_limit": 0, "upper_limit": 5},
        ],
        headers=headers(world.admin),
    )
    assert replaced.status_code == 200
    assert [s["label"] for s in replaced.json()] == ["Fail", "Pass"]

    stored = seeder.scalars(
        select(SkillLevelSetting).where(SkillLevelSetting.institution_id == world.institution.id)
    )
    assert len(stored) == 2


def test_level_settings_orders_must_be_contiguous(client, world, headers):
    response = client.put(
        f"/institutions/{world.institution.id}/level-settings",
        json=[{"order": 1, "label": "Low"}, {"order": 3, "label": "High"}],
        headers=headers(world.admin),
    )
    assert response.status_code == 400


def test_level_settings_hidden_from_other_institutions(client, world, headers):
    response = client.get(
        f"/institutions/{world.institution.id}/level-settings", headers=headers(world.outsider)
    )
    assert response.status_code == 404
