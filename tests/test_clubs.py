from app.extensions import db
from app.models import ClubAuditLog, ClubMember


def _audit_codes(app, club_id):
    with app.app_context():
        rows = db.session.execute(
            db.select(ClubAuditLog).where(ClubAuditLog.club_id == club_id).order_by(ClubAuditLog.id)
        ).scalars().all()
        return [r.action_code for r in rows]


def test_list_clubs_hides_private_and_archived(client, login_as, make_user, make_club):
    owner = make_user()
    public_id = make_club(owner, name="Morning Runners")
    make_club(make_user(), name="Secret Society", visibility="private")
    archived_id = make_club(make_user(), name="Old Club")
    client.post(f"/api/clubs/{archived_id}/archive")

    data = client.get("/api/clubs").get_json()["data"]
    assert [c["id"] for c in data["items"]] == [public_id]
    assert data["total"] == 1

    found = client.get("/api/clubs?q=morning").get_json()["data"]["items"]
    assert [c["name"] for c in found] == ["Morning Runners"]


def test_private_club_is_invisible_to_outsiders(client, login_as, make_user, make_club, add_member):
    owner = make_user()
    member = make_user()
    club_id = make_club(owner, visibility="private")
    add_member(club_id, member)

    login_as(make_user())
    assert client.get(f"/api/clubs/{club_id}").status_code == 404
    login_as(member)
    assert client.get(f"/api/clubs/{club_id}").status_code == 200


def test_update_requires_manager_and_owner_for_visibility(app, client, login_as, make_user, make_club, add_member):
    owner = make_user()
    admin = make_user()
    plain = make_user()
    club_id = make_club(owner)
    add_member(club_id, admin, role="admin")
    add_member(club_id, plain)

    login_as(plain)
    assert client.patch(f"/api/clubs/{club_id}", json={"description": "x"}).status_code == 403

    login_as(admin)
    assert client.patch(f"/api/clubs/{club_id}", json={"description": "Weekly runs"}).status_code == 200
    assert client.patch(f"/api/clubs/{club_id}", json={"visibility": "private"}).status_code == 403

    login_as(owner)
    resp = client.patch(f"/api/clubs/{club_id}", json={"visibility": "private"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["club"]["visibility"] == "private"

    codes = _audit_codes(app, club_id)
    assert "CLUB_UPDATED" in codes
    assert codes[-1] == "CLUB_VISIBILITY_CHANGED"


def test_update_validation(client, make_user, make_club):
    club_id = make_club(make_user())
    assert client.patch(f"/api/clubs/{club_id}", json={}).status_code == 400
    assert client.patch(f"/api/clubs/{club_id}", json={"name": "x"}).status_code == 400
    assert client.patch(f"/api/clubs/{club_id}", json={"visibility": "secret"}).status_code == 400


def test_role_change(app, client, login_as, make_user, make_club, add_member):
    owner = make_user()
    member = make_user()
    club_id = make_club(owner)
    add_member(club_id, member)
    login_as(owner)

    resp = client.patch(f"/api/clubs/{club_id}/members/{member}", json={"role": "organizer"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["member"]["role"] == "organizer"

    assert client.patch(f"/api/clubs/{club_id}/members/{member}", json={"role": "owner"}).status_code == 400
    assert client.patch(f"/api/clubs/{club_id}/members/{owner}", json={"role": "member"}).status_code == 403
    assert client.patch(f"/api/clubs/{club_id}/members/{make_user()}", json={"role": "member"}).status_code == 404

    with app.app_context():
        log = db.session.execute(
            db.select(ClubAuditLog).where(ClubAuditLog.action_code == "ROLE_CHANGED")
        ).scalar_one()
        assert log.meta == {"from": "member", "to": "organizer"}
        assert log.target_user_id == member


def test_duplicate_member_conflicts(client, login_as, make_user, make_club, add_member):
    owner = make_user()
    member = make_user()
    club_id = make_club(owner)
    add_member(club_id, member)
    login_as(owner)
    assert client.post(f"/api/clubs/{club_id}/members", json={"userId": member}).status_code == 409
    assert client.post(f"/api/clubs/{club_id}/members", json={"userId": 99999}).status_code == 404


def test_member_can_leave_but_owner_cannot(app, client, login_as, make_user, make_club, add_member):
    owner = make_user()
    member = make_user()
    club_id = make_club(owner)
    add_member(club_id, member)

    login_as(member)
    assert client.delete(f"/api/clubs/{club_id}/members/{member}").status_code == 200
    with app.app_context():
        assert db.session.execute(
            db.select(ClubMember).where(ClubMember.club_id == club_id, ClubMember.user_id == member)
        ).scalar_one_or_none() is None

    login_as(owner)
    resp = client.delete(f"/api/clubs/{club_id}/members/{owner}")
    assert resp.status_code == 403
    assert "MEMBER_LEFT" in _audit_codes(app, club_id)


def test_only_owner_removes_others(client, login_as, make_user, make_club, add_member):
    owner = make_user()
    admin = make_user()
    member = make_user()
    club_id = make_club(owner)
    add_member(club_id, admin, role="admin")
    add_member(club_id, member)

    login_as(admin)
    assert client.delete(f"/api/clubs/{club_id}/members/{member}").status_code == 403
    login_as(owner)
    assert client.delete(f"/api/clubs/{club_id}/members/{member}").status_code == 200


def test_join_request_flow(app, client, login_as, make_user, make_club):
    owner = make_user()
    runner = make_user()
    club_id = make_club(owner)

    login_as(runner)
    first = client.post(f"/api/clubs/{club_id}/join-requests", json={"message": "Hi!"})
    assert first.status_code == 201
    request_id = first.get_json()["data"]["request"]["id"]

    again = client.post(f"/api/clubs/{club_id}/join-requests", json={"message": "Hello?"})
    assert again.status_code == 200
    assert again.get_json()["data"]["created"] is False
    assert again.get_json()["data"]["request"]["id"] == request_id

    # requesters cannot review
    assert client.get(f"/api/clubs/{club_id}/join-requests").status_code == 403

    login_as(owner)
    pending = client.get(f"/api/clubs/{club_id}/join-requests").get_json()["data"]["items"]
    assert [r["id"] for r in pending] == [request_id]

    approved = client.post(f"/api/clubs/{club_id}/join-requests/{request_id}/approve")
    assert approved.status_code == 200
    assert approved.get_json()["data"]["request"]["status"] == "approved"
    assert client.post(f"/api/clubs/{club_id}/join-requests/{request_id}/approve").status_code == 409

    members = client.get(f"/api/clubs/{club_id}/members").get_json()["data"]["items"]
    assert {m["userId"] for m in members} == {owner, runner}

    login_as(runner)
    assert client.post(f"/api/clubs/{club_id}/join-requests").status_code == 409


def test_join_request_rejection(client, login_as, make_user, make_club):
    owner = make_user()
    runner = make_user()
    club_id = make_club(owner)

    login_as(runner)
    request_id = client.post(f"/api/clubs/{club_id}/join-requests").get_json()["data"]["request"]["id"]

    login_as(owner)
    resp = client.post(f"/api/clubs/{club_id}/join-requests/{request_id}/reject")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["request"]["status"] == "rejected"
    assert client.get(f"/api/clubs/{club_id}/join-requests").get_json()["data"]["items"] == []
    everything = client.get(f"/api/clubs/{club_id}/join-requests?status=all").get_json()["data"]["items"]
    assert len(everything) == 1

    # a rejected requester may ask again
    login_as(runner)
    assert client.post(f"/api/clubs/{club_id}/join-requests").status_code == 201


def test_archived_club_blocks_changes(client, login_as, make_user, make_club):
    owner = make_user()
    club_id = make_club(owner)
    assert client.post(f"/api/clubs/{club_id}/archive").status_code == 200

    resp = client.post("/api/events", json={"title": "Nope", "clubId": club_id})
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "CLUB_ARCHIVED"
    assert client.patch(f"/api/clubs/{club_id}", json={"description": "x"}).status_code == 403

    login_as(make_user())
    assert client.post(f"/api/clubs/{club_id}/join-requests").status_code == 403

    login_as(owner)
    assert client.post(f"/api/clubs/{club_id}/unarchive").get_json()["data"]["club"]["isArchived"] is False
    assert client.post("/api/events", json={"title": "Back", "clubId": club_id}).status_code == 201


def test_members_list_requires_membership(client, login_as, make_user, make_club):
    club_id = make_club(make_user())
    login_as(make_user())
    assert client.get(f"/api/clubs/{club_id}/members").status_code == 403
