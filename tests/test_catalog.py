from datetime import datetime

import pytest

from sakina.exceptions import ForbiddenError, NotFoundError, ValidationError
from sakina.models.track import ContentAccess, Track
from sakina.schemas.catalog import ProgramUpdate
from sakina.services.catalog_service import CatalogService
from sakina.services.subscription_service import SubscriptionService

API = "/api/v1"


def test_stream_free_track_bumps_play_count(db, user, make_track):
    track = make_track()

    result = CatalogService.get_stream_url(db, user, track.id)

    assert result["track_id"] == track.id
    assert result["url"] == f"http://testserver/uploads/{track.audio_key}"
    db.refresh(track)
    assert track.play_count == 1


def test_stream_paid_track_without_subscription(db, user, make_track):
    track = make_track(content_access=ContentAccess.PREMIUM)

    with pytest.raises(ForbiddenError) as exc_info:
        CatalogService.get_stream_url(db, user, track.id)

    assert exc_info.value.extra == {"requiresSubscription": True}
    db.refresh(track)
    assert track.play_count == 0


def test_stream_paid_track_with_matching_tier(db, user, packages, make_track):
    track = make_track(content_access=ContentAccess.BASIC)
    premium_only = make_track(content_access=ContentAccess.PREMIUM)
    SubscriptionService.subscribe(db, user, packages["standard"].id)

    assert CatalogService.get_stream_url(db, user, track.id)["url"]
    with pytest.raises(ForbiddenError):
        CatalogService.get_stream_url(db, user, premium_only.id)


def test_inactive_track_is_not_found(db, user, make_track):
    track = make_track(is_active=False)

    with pytest.raises(NotFoundError):
        CatalogService.get_track(db, track.id)
    assert CatalogService.get_track(db, track.id, include_inactive=True).id == track.id


def test_list_tracks_filters(db, make_track):
    make_track(title="Deep sleep")
    make_track(title="Morning focus", content_access=ContentAccess.PREMIUM)
    make_track(title="Sleep stories", is_active=False)

    items, total = CatalogService.list_tracks(db, search="sleep")
    assert total == 1
    assert items[0].title == "Deep sleep"

    items, total = CatalogService.list_tracks(db, content_access="premium")
    assert [t.title for t in items] == ["Morning focus"]


def test_locked_program_preview(db, user, make_track, make_program):
    tracks = [make_track(), make_track()]
    program = make_program(tracks, content_access=ContentAccess.PREMIUM)

    detail = CatalogService.get_program_detail(db, user, program.id)

    assert detail["is_locked"] is True
    assert detail["total_tracks"] == 2
    assert detail["total_duration_seconds"] == 1200
    assert detail["tracks"] == [
        {"order": 1, "title": tracks[0].title, "duration_seconds": 600},
        {"order": 2, "title": tracks[1].title, "duration_seconds": 600},
    ]


def test_unlocked_program_has_full_tracks(db, user, packages, make_track, make_program):
    program = make_program([make_track(), make_track()], content_access=ContentAccess.PREMIUM)
    SubscriptionService.subscribe(db, user, packages["premium"].id)

    detail = CatalogService.get_program_detail(db, user, program.id)

    assert detail["is_locked"] is False
    assert [t["order"] for t in detail["tracks"]] == [1, 2]
    assert "audio_key" not in detail["tracks"][0]
    assert detail["tracks"][0]["image_url"]


def test_update_program_reorders_tracks(db, make_track, make_program):
    first, second, third = make_track(), make_track(), make_track()
    program = make_program([first, second])

    updated = CatalogService.update_program(db, program.id, ProgramUpdate(track_ids=[third.id, first.id]))

    assert updated.track_ids == [third.id, first.id]
    assert [pt.order for pt in updated.tracks] == [1, 2]


def test_update_program_rejects_unknown_track(db, make_track, make_program):
    program = make_program([make_track()])

    with pytest.raises(ValidationError):
        CatalogService.update_program(db, program.id, ProgramUpdate(track_ids=[9999]))


def test_favorites_are_idempotent(db, user, make_track, make_program):
    track = make_track()
    program = make_program([track])

    _, created = CatalogService.add_favorite(db, user.id, track_id=track.id)
    _, created_again = CatalogService.add_favorite(db, user.id, track_id=track.id)
    CatalogService.add_favorite(db, user.id, program_id=program.id)

    assert created and not created_again
    favorites = CatalogService.list_favorites(db, user.id)
    assert [t["id"] for t in favorites["tracks"]] == [track.id]
    assert [p["id"] for p in favorites["programs"]] == [program.id]

    CatalogService.remove_favorite(db, user.id, track_id=track.id)
    with pytest.raises(NotFoundError):
        CatalogService.remove_favorite(db, user.id, track_id=track.id)


def test_favorite_needs_exactly_one_target(db, user):
    with pytest.raises(ValidationError):
        CatalogService.add_favorite(db, user.id)
    with pytest.raises(ValidationError):
        CatalogService.add_favorite(db, user.id, track_id=1, program_id=1)


# ============================================
# HTTP
# ============================================

def test_stream_endpoint_requires_subscription(client, user_headers, make_track):
    track = make_track(content_access=ContentAccess.BASIC)

    response = client.get(f"{API}/tracks/{track.id}/stream", headers=user_headers)

    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["error"]["requiresSubscription"] is True


def test_stream_endpoint_requires_auth(client, make_track):
    response = client.get(f"{API}/tracks/{make_track().id}/stream")
    assert response.status_code == 401


def test_track_metadata_hides_audio_key(client, make_track):
    track = make_track()

    response = client.get(f"{API}/tracks/{track.id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == track.title
    assert data["is_premium"] is False
    assert "audio_key" not in data


def test_track_list_is_paginated(client, make_track):
    for _ in range(3):
        make_track()

    response = client.get(f"{API}/tracks", params={"limit": 2})

    data = response.json()["data"]
    assert len(data["items"]) == 2
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}


def test_anonymous_program_detail_is_locked(client, make_track, make_program):
    program = make_program([make_track()], content_access=ContentAccess.BASIC)

    response = client.get(f"{API}/programs/{program.id}")

    assert response.status_code == 200
    assert response.json()["data"]["is_locked"] is True


def test_categories_list_only_active(client, db, category):
    category.is_active = False
    db.commit()

    response = client.get(f"{API}/categories")

    assert response.json()["data"] == []
    assert client.get(f"{API}/categories/{category.id}").status_code == 404


def test_favorites_endpoints(client, user_headers, make_track):
    track = make_track()

    first = client.post(f"{API}/favorites/tracks/{track.id}", headers=user_headers)
    second = client.post(f"{API}/favorites/tracks/{track.id}", headers=user_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["message"] == "Already in favorites"

    listing = client.get(f"{API}/favorites", headers=user_headers).json()["data"]
    assert [t["id"] for t in listing["tracks"]] == [track.id]

    assert client.delete(f"{API}/favorites/tracks/{track.id}", headers=user_headers).status_code == 200
    assert client.delete(f"{API}/favorites/tracks/{track.id}", headers=user_headers).status_code == 404
