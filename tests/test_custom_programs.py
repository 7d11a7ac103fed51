import pytest

from sakina.exceptions import NotFoundError, ValidationError
from sakina.services.custom_program_service import CustomProgramService

API = "/api/v1"


def test_create_keeps_track_order_and_defaults_thumbnail(db, user, make_track):
    first, second = make_track(), make_track()

    program = CustomProgramService.create(db, user.id, "Evening", [second.id, first.id])

    assert program.track_ids == [second.id, first.id]
    assert program.tracks == [
        {"track_id": second.id, "order": 1},
        {"track_id": first.id, "order": 2},
    ]
    assert program.thumbnail_url == second.image_url


@pytest.mark.parametrize("track_ids, message", [
    ([], "At least one track is required"),
    ([1, 1], "Duplicate tracks are not allowed"),
    ([1, 9999], "One or more track IDs are invalid or inactive"),
])
def test_create_rejects_bad_track_lists(db, user, make_track, track_ids, message):
    make_track()

    with pytest.raises(ValidationError) as exc_info:
        CustomProgramService.create(db, user.id, "Broken", track_ids)

    assert exc_info.value.message == message


def test_inactive_tracks_cannot_be_added(db, user, make_track):
    hidden = make_track(is_active=False)

    with pytest.raises(ValidationError):
        CustomProgramService.create(db, user.id, "Hidden", [hidden.id])


def test_programs_are_scoped_to_their_owner(db, make_user, make_track):
    owner, stranger = make_user(), make_user()
    program = CustomProgramService.create(db, owner.id, "Mine", [make_track().id])

    with pytest.raises(NotFoundError):
        CustomProgramService.get(db, stranger.id, program.id)
    with pytest.raises(NotFoundError):
        CustomProgramService.delete(db, stranger.id, program.id)
    assert CustomProgramService.list_programs(db, stranger.id) == []


def test_update_replaces_tracks(db, user, make_track):
    first, second, third = make_track(), make_track(), make_track()
    program = CustomProgramService.create(db, user.id, "Focus", [first.id, second.id])

    updated = CustomProgramService.update(db, user.id, program.id, name="Deep focus", track_ids=[third.id])

    assert updated.name == "Deep focus"
    assert updated.track_ids == [third.id]
    assert updated.thumbnail_url == third.image_url


def test_with_tracks_totals_duration(db, user, make_track):
    short, long = make_track(duration_seconds=120), make_track(duration_seconds=900)
    program = CustomProgramService.create(db, user.id, "Mix", [long.id, short.id])

    data = CustomProgramService.with_tracks(db, program)

    assert [t["track_id"] for t in data["tracks"]] == [long.id, short.id]
    assert data["total_duration_seconds"] == 1020


# ============================================
# HTTP
# ============================================

def test_custom_program_endpoints(client, user_headers, make_track):
    first, second = make_track(), make_track()

    created = client.post(
        f"{API}/users/custom-programs",
        json={"name": "Morning", "track_ids": [first.id, second.id]},
        headers=user_headers,
    )
    assert created.status_code == 201
    assert created.json()["message"] == "Custom program created"
    program_id = created.json()["data"]["id"]

    updated = client.put(
        f"{API}/users/custom-programs/{program_id}", json={"is_public": True}, headers=user_headers
    )
    assert updated.json()["data"]["is_public"] is True
    assert [t["track_id"] for t in updated.json()["data"]["tracks"]] == [first.id, second.id]

    listing = client.get(f"{API}/users/custom-programs", headers=user_headers).json()["data"]
    assert [p["id"] for p in listing] == [program_id]

    assert client.delete(f"{API}/users/custom-programs/{program_id}", headers=user_headers).status_code == 200
    assert client.get(f"{API}/users/custom-programs/{program_id}", headers=user_headers).status_code == 404


def test_custom_program_requires_tracks(client, user_headers):
    response = client.post(
        f"{API}/users/custom-programs", json={"name": "Empty", "track_ids": []}, headers=user_headers
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"


def test_other_users_custom_program_is_hidden(client, make_user, make_track, headers_for, db):
    owner, stranger = make_user(), make_user()
    program = CustomProgramService.create(db, owner.id, "Private", [make_track().id])

    response = client.get(f"{API}/users/custom-programs/{program.id}", headers=headers_for(stranger))

    assert response.status_code == 404
