import pytest
from fastapi import HTTPException

from bonsbras.models.models import AuditLog, ProPortfolioItem, ProProfile
from bonsbras.schemas.onboarding import OnboardingForm
from bonsbras.services import onboarding

from conftest import FakeStorage, make_client, make_pro, make_user, auth_headers, png_bytes


def _form(**overrides):
    values = dict(
        full_name="Paul Pro",
        company_name="Rénovations Paul",
        specialties=["plumber", "electrician"],
        description="Vingt ans de rénovation à Montréal.",
    )
    values.update(overrides)
    return OnboardingForm(**values)


def _images(n):
    return [onboarding.ImageUpload(f"photo{i}.png", "image/png", png_bytes(), caption=f"Chantier {i}") for i in range(n)]


@pytest.mark.parametrize(
    "step,overrides",
    [
        (1, {"company_name": "   "}),
        (1, {"full_name": ""}),
        (2, {"specialties": []}),
        (2, {"specialties": ["astronaut"]}),
        (4, {"description": "x" * 1001}),
    ],
)
def test_step_validation_names_the_step(step, overrides):
    with pytest.raises(HTTPException) as exc:
        onboarding.validate_step(step, _form(**overrides))
    assert exc.value.status_code == 400
    assert exc.value.detail["step"] == step


def test_bio_at_limit_is_accepted():
    assert onboarding.validate_step(4, _form(description="x" * 1000)) == {"step": 4}


def test_step_three_reports_truncation():
    result = onboarding.validate_step(3, _form(portfolio_count=12), existing_portfolio=0)
    assert result == {"step": 3, "portfolio_kept": 10, "portfolio_dropped": 2}
    assert onboarding.clamp_portfolio(7, 5) == (3, 2)
    assert onboarding.clamp_portfolio(12, 1) == (0, 1)


def test_submit_with_twelve_images_keeps_ten(db, storage):
    pro_user = make_pro(db, onboarded=False)
    result = onboarding.submit(db, storage, pro_user, _form(), images=_images(12))

    assert result["portfolio_added"] == 10
    assert result["portfolio_dropped"] == 2
    assert db.query(ProPortfolioItem).filter(ProPortfolioItem.pro_id == pro_user.id).count() == 10
    items = db.query(ProPortfolioItem).filter(ProPortfolioItem.pro_id == pro_user.id).all()
    assert {i.category for i in items} == {"plumber"}
    assert all(key[1].startswith(f"{pro_user.id}/") for key in storage.objects)


def test_completion_transition_is_audited_once(db, storage):
    pro_user = make_pro(db, onboarded=False)
    onboarding.submit(db, storage, pro_user, _form())
    profile = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one()
    assert profile.onboarding_complete is True

    onboarding.submit(db, storage, pro_user, _form(company_name="Paul & Fils"))
    assert db.query(AuditLog).filter(AuditLog.action == "ONBOARDING_COMPLETE").count() == 1


def test_failed_upload_compensates_and_writes_nothing(db):
    pro_user = make_pro(db, onboarded=False)
    storage = FakeStorage(fail_on=3)
    avatar = onboarding.ImageUpload("me.jpg", "image/jpeg", png_bytes())

    with pytest.raises(HTTPException) as exc:
        onboarding.submit(db, storage, pro_user, _form(), avatar=avatar, images=_images(4))
    assert exc.value.status_code == 502

    assert storage.objects == {}
    assert len(storage.deleted) == 2
    db.expire_all()
    profile = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one()
    assert profile.onboarding_complete is False
    assert db.query(ProPortfolioItem).count() == 0


def test_failed_resubmission_keeps_the_current_avatar(db):
    pro_user = make_pro(db, onboarded=False)
    # upload #1 is the first avatar; the resubmission fails on its third upload (#4)
    storage = FakeStorage(fail_on=4)
    onboarding.submit(db, storage, pro_user, _form(), avatar=onboarding.ImageUpload("me.png", "image/png", png_bytes()))
    profile = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one()
    first_url, first_key = profile.avatar_url, profile.avatar_key

    with pytest.raises(HTTPException) as exc:
        onboarding.submit(
            db, storage, pro_user, _form(company_name="Paul & Fils"),
            avatar=onboarding.ImageUpload("new.png", "image/png", png_bytes()),
            images=_images(2),
        )
    assert exc.value.status_code == 502

    db.expire_all()
    profile = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one()
    assert profile.avatar_url == first_url
    assert profile.company_name == "Rénovations Paul"
    assert storage.exists("avatars", first_key)
    assert list(storage.objects) == [("avatars", first_key)]


def test_replaced_avatar_is_removed_after_commit(db, storage):
    pro_user = make_pro(db, onboarded=False)
    onboarding.submit(db, storage, pro_user, _form(), avatar=onboarding.ImageUpload("me.png", "image/png", png_bytes()))
    first_key = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one().avatar_key

    onboarding.submit(db, storage, pro_user, _form(), avatar=onboarding.ImageUpload("new.jpg", "image/jpeg", png_bytes()))
    profile = db.query(ProProfile).filter(ProProfile.user_id == pro_user.id).one()
    assert profile.avatar_key != first_key
    assert profile.avatar_key.endswith(".jpg")
    assert storage.deleted == [("avatars", first_key)]
    assert list(storage.objects) == [("avatars", profile.avatar_key)]


def test_non_image_upload_is_rejected(db, storage):
    pro_user = make_pro(db, onboarded=False)
    bad = onboarding.ImageUpload("cv.pdf", "application/pdf", b"%PDF-1.4")
    with pytest.raises(HTTPException) as exc:
        onboarding.submit(db, storage, pro_user, _form(), images=[bad])
    assert exc.value.detail["step"] == 3
    assert storage.upload_calls == 0


def test_prefill_after_completion(db, storage):
    pro_user = make_pro(db, onboarded=False)
    onboarding.submit(db, storage, pro_user, _form(), images=_images(2))
    data = onboarding.prefill(db, pro_user)
    assert data["onboarding_complete"] is True
    assert data["form"].company_name == "Rénovations Paul"
    assert data["form"].specialties == ["plumber", "electrician"]
    assert data["form"].description == "Vingt ans de rénovation à Montréal."
    assert data["portfolio_slots_left"] == 8


def test_prefill_for_pro_without_profile_uses_signup_metadata(db):
    user = make_user(db, "nouveau@example.com", role="professional")
    user.user_metadata = {"role": "professional", "full_name": "Nina Neuve", "company_name": "Neuve Inc."}
    db.commit()
    data = onboarding.prefill(db, user)
    assert data["form"].company_name == "Neuve Inc."
    assert data["onboarding_complete"] is False


def test_onboarding_page_redirects_clients(client, db):
    client_user = make_client(db)
    resp = client.get("/onboarding", headers=auth_headers(client_user))
    assert resp.status_code == 200
    assert resp.json() == {"redirect": "/dashboard"}


def test_submit_over_http(client, db, storage):
    pro_user = make_pro(db, onboarded=False)
    files = [("portfolio", (f"p{i}.png", png_bytes(), "image/png")) for i in range(3)]
    files.append(("avatar", ("avatar.png", png_bytes(), "image/png")))
    resp = client.post(
        "/onboarding",
        data={
            "full_name": "Paul Pro",
            "company_name": "Rénovations Paul",
            "specialties": ["landscaper"],
            "description": "Jardins et terrasses.",
            "captions": ["Avant", "Après", "Détail"],
        },
        files=files,
        headers=auth_headers(pro_user),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["redirect"] == "/dashboard/entrepreneur"
    assert body["portfolio_added"] == 3
    assert body["profile"]["onboarding_complete"] is True
    assert f"/avatars/{pro_user.id}/avatar-" in body["profile"]["avatar_url"]
    assert body["profile"]["avatar_url"].endswith(".png")
    assert sorted(p["caption"] for p in body["profile"]["portfolio"]) == ["Après", "Avant", "Détail"]
    assert storage.uploads_on_loop == [False] * 4


def test_step_endpoint(client, db):
    pro_user = make_pro(db, onboarded=False)
    resp = client.post("/onboarding/steps/2", json={"specialties": []}, headers=auth_headers(pro_user))
    assert resp.status_code == 400
    assert resp.json()["detail"] == {"error": "Select at least one specialty", "step": 2}


def test_step_endpoint_redirects_clients(client, db):
    client_user = make_client(db)
    resp = client.post("/onboarding/steps/1", json={}, headers=auth_headers(client_user))
    assert resp.status_code == 200
    assert resp.json() == {"redirect": "/dashboard"}
