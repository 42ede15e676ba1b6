from __future__ import annotations

import copy
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from app.core.config import WorkflowConfig
from app.core.errors import ConflictError, NotAssignedError, NotFoundError, ValidationFailedError
from app.models.article import ArticleDraft, AttachmentCategory
from app.schemas.review import ReviewFeedback
from app.services.article_store import ArticleStore
from app.services.attachment_store import AttachmentStore
from app.services.review_workflow_service import ReviewWorkflowService, UploadedAttachment


def _assignment(email: str, **extra):
    row = {
        "email": email,
        "status": "Null",
        "comments": "",
        "review_date": "2026-01-01T00:00:00+00:00",
        "reviewed": False,
        "created_at": "2026-01-01T00:00:00+00:00",
    }
    row.update(extra)
    return row


def _service(store, *, scoping: bool = False, attempts: int = 5, attachments=None) -> ReviewWorkflowService:
    return ReviewWorkflowService(
        store=store,
        attachments=attachments,
        config=WorkflowConfig(journal_scoping_enabled=scoping, review_update_max_attempts=attempts),
    )


def _draft() -> ArticleDraft:
    return ArticleDraft.model_validate(
        {
            "title": "T",
            "abstract": "A",
            "keywords": ["k1"],
            "authors": [
                {
                    "firstName": "X",
                    "lastName": "Y",
                    "email": "x@y.com",
                    "affiliation": "Z",
                    "correspondingAuthor": True,
                    "firstAuthor": True,
                    "otherAuthor": False,
                }
            ],
        }
    )


def _uploads(with_supplementary: bool = False):
    uploads = {
        AttachmentCategory.MANUSCRIPT: UploadedAttachment("paper.pdf", b"%PDF-manuscript"),
        AttachmentCategory.COVER_LETTER: UploadedAttachment("letter.docx", b"cover"),
        AttachmentCategory.MERGED: UploadedAttachment("merged.pdf", b"%PDF-merged"),
    }
    if with_supplementary:
        uploads[AttachmentCategory.SUPPLEMENTARY] = UploadedAttachment("data.csv", b"a,b")
    return uploads


# === 投稿 ===


def test_submit_article_starts_in_submitted_with_no_reviewers(article_store, tmp_path):
    attachments = AttachmentStore(tmp_path)
    svc = _service(article_store, attachments=attachments)

    created = svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=_uploads())

    assert created["status"] == "submitted"
    assert created["reviewers"] == []
    assert created["final_status"] is None
    assert created["version"] == 0
    assert created["authors"][0]["email"] == "x@y.com"
    assert created["supplementary_file"] is None
    manuscript_path = attachments.path_for(AttachmentCategory.MANUSCRIPT, created["manuscript"])
    assert manuscript_path.read_bytes() == b"%PDF-manuscript"
    assert created["manuscript"].startswith("manuscript-")
    assert created["manuscript"].endswith(".pdf")


def test_submit_article_stores_optional_supplementary_file(article_store, tmp_path):
    svc = _service(article_store, attachments=AttachmentStore(tmp_path))
    created = svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=_uploads(with_supplementary=True))
    assert created["supplementary_file"].startswith("supplementary-")
    assert (tmp_path / "supplementary-file" / created["supplementary_file"]).read_bytes() == b"a,b"


def test_submit_article_requires_core_attachments(article_store, tmp_path):
    svc = _service(article_store, attachments=AttachmentStore(tmp_path))
    uploads = _uploads()
    uploads.pop(AttachmentCategory.COVER_LETTER)

    with pytest.raises(ValidationFailedError):
        svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=uploads)
    assert article_store.rows == {}


def test_submit_article_removes_files_when_insert_fails(article_store, tmp_path):
    def _boom(_row):
        raise RuntimeError("db down")

    article_store.insert = _boom  # type: ignore[method-assign]
    svc = _service(article_store, attachments=AttachmentStore(tmp_path))

    with pytest.raises(RuntimeError):
        svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=_uploads())
    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


def test_submit_article_drops_unsafe_extension(article_store, tmp_path):
    uploads = _uploads()
    uploads[AttachmentCategory.SUPPLEMENTARY] = UploadedAttachment("s.p\\df", b"data")
    svc = _service(article_store, attachments=AttachmentStore(tmp_path))

    created = svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=uploads)

    assert "." not in created["supplementary_file"]
    assert (tmp_path / "supplementary-file" / created["supplementary_file"]).read_bytes() == b"data"


class _FailingOnSupplementary(AttachmentStore):
    def save(self, category, original_name, content):
        if category is AttachmentCategory.SUPPLEMENTARY:
            raise ValueError("filename must be a plain file name")
        return super().save(category, original_name, content)


def test_submit_article_failed_save_leaves_no_files(article_store, tmp_path):
    svc = _service(article_store, attachments=_FailingOnSupplementary(tmp_path))

    with pytest.raises(ValidationFailedError, match="Article submission failed"):
        svc.submit_article(owner_id="owner-1", draft=_draft(), uploads=_uploads(with_supplementary=True))

    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []
    assert article_store.rows == {}


# === 查询 ===


def test_list_own_articles_unions_owned_and_coauthored_without_duplicates(article_store):
    owned = article_store.seed(owner_id="owner-1", authors=[{"email": "me@example.com"}])
    coauthored = article_store.seed(owner_id="owner-2", authors=[{"email": "me@example.com"}])
    article_store.seed(owner_id="owner-3", authors=[{"email": "other@example.com"}])

    result = _service(article_store).list_own_articles(account_id="owner-1", account_email="ME@example.com")

    assert [a["id"] for a in result] == [owned["id"], coauthored["id"]]
    assert result[0]["owner"]["first_name"] == "Ada"
    assert "email" not in result[0]["owner"]


def test_list_own_articles_raises_not_found_when_nothing_submitted(article_store):
    article_store.seed(owner_id="owner-2")
    with pytest.raises(NotFoundError, match="didn't submit"):
        _service(article_store).list_own_articles(account_id="owner-1", account_email="me@example.com")


def test_list_articles_for_journal_ignores_journal_id_by_default(article_store):
    a = article_store.seed(journal_id="j1")
    b = article_store.seed(journal_id="j2")
    svc = _service(article_store)

    first = svc.list_articles_for_journal("j1")
    second = svc.list_articles_for_journal("j1")

    assert [x["id"] for x in first] == [a["id"], b["id"]]
    assert first == second
    assert first[0]["owner"]["email"] == "owner@example.com"


def test_list_articles_for_journal_filters_when_scoping_enabled(article_store):
    a = article_store.seed(journal_id="j1")
    article_store.seed(journal_id="j2")

    result = _service(article_store, scoping=True).list_articles_for_journal("j1")
    assert [x["id"] for x in result] == [a["id"]]

    with pytest.raises(NotFoundError):
        _service(article_store, scoping=True).list_articles_for_journal("j-missing")


def test_list_articles_for_journal_empty_is_not_found(article_store):
    with pytest.raises(NotFoundError, match="No journal articles found"):
        _service(article_store).list_articles_for_journal("any")


def test_list_review_assignments_only_exposes_own_entry(article_store):
    shared = article_store.seed(reviewers=[_assignment("r1@example.com"), _assignment("r2@example.com")])
    article_store.seed(reviewers=[_assignment("r2@example.com")])

    result = _service(article_store).list_review_assignments("r1@example.com")

    assert len(result) == 1
    assert result[0]["id"] == shared["id"]
    assert set(result[0].keys()) == {"id", "title", "created_at", "merged_script", "reviewers"}
    assert [r["email"] for r in result[0]["reviewers"]] == ["r1@example.com"]


def test_list_review_assignments_not_found_for_unassigned_reviewer(article_store):
    article_store.seed(reviewers=[_assignment("r1@example.com")])
    with pytest.raises(NotFoundError, match="No review articles found"):
        _service(article_store).list_review_assignments("stranger@example.com")


# === 写操作 ===


def test_update_article_overwrites_present_fields_only(article_store):
    row = article_store.seed(remarks="old", status="submitted")

    updated = _service(article_store).update_article(row["id"], {"status": "under review", "final_status": "accepted"})

    assert updated["status"] == "under review"
    assert updated["final_status"] == "accepted"
    assert updated["remarks"] == "old"
    assert updated["version"] == 1


def test_update_article_unknown_id_is_not_found(article_store):
    with pytest.raises(NotFoundError, match="Journal article not found"):
        _service(article_store).update_article("missing", {"status": "x"})


def test_update_article_rejects_empty_patch(article_store):
    row = article_store.seed()
    with pytest.raises(ValidationFailedError):
        _service(article_store).update_article(row["id"], {})


def test_assign_reviewers_appends_defaults_and_skips_existing(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com", status="Accepted")])

    updated = _service(article_store).assign_reviewers(row["id"], ["r1@example.com", "R2@example.com"])

    emails = [r["email"] for r in updated["reviewers"]]
    assert emails == ["r1@example.com", "r2@example.com"]
    assert updated["reviewers"][0]["status"] == "Accepted"
    new_entry = updated["reviewers"][1]
    assert new_entry["status"] == "Null"
    assert new_entry["comments"] == ""
    assert new_entry["reviewed"] is False
    assert new_entry["review_date"] and new_entry["created_at"]


def test_submit_review_updates_only_own_entry(article_store):
    r2 = _assignment("r2@example.com", comments="keep me")
    row = article_store.seed(reviewers=[_assignment("r1@example.com"), copy.deepcopy(r2)])

    own = _service(article_store).submit_review(
        article_id=row["id"],
        reviewer_email="r1@example.com",
        feedback=ReviewFeedback(status="Accepted", comments="Looks good", reviewed=True),
    )

    assert own["email"] == "r1@example.com"
    assert own["status"] == "Accepted"
    assert own["reviewed"] is True
    stored = article_store.rows[row["id"]]
    assert stored["reviewers"][1] == r2
    assert stored["reviewers"][0]["created_at"] == "2026-01-01T00:00:00+00:00"


def test_submit_review_cannot_change_email_key(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com")])
    feedback = ReviewFeedback.model_validate({"email": "r2@example.com", "comments": "hi"})

    own = _service(article_store).submit_review(
        article_id=row["id"], reviewer_email="r1@example.com", feedback=feedback
    )

    assert own["email"] == "r1@example.com"
    assert [r["email"] for r in article_store.rows[row["id"]]["reviewers"]] == ["r1@example.com"]


def test_submit_review_without_assignment_raises_not_assigned(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com")])
    before = copy.deepcopy(article_store.rows[row["id"]])

    with pytest.raises(NotAssignedError):
        _service(article_store).submit_review(
            article_id=row["id"],
            reviewer_email="stranger@example.com",
            feedback=ReviewFeedback(comments="x"),
        )
    assert article_store.rows[row["id"]] == before


def test_submit_review_unknown_article_is_not_found(article_store):
    with pytest.raises(NotFoundError):
        _service(article_store).submit_review(
            article_id="missing", reviewer_email="r1@example.com", feedback=ReviewFeedback(comments="x")
        )


def test_submit_review_retries_after_concurrent_write(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com"), _assignment("r2@example.com")])
    injected = {"done": False}

    def _concurrent_reviewer(article_id: str) -> None:
        # 第一次写之前，模拟 r2 抢先提交
        if injected["done"]:
            return
        injected["done"] = True
        stored = article_store.rows[article_id]
        stored["reviewers"][1]["comments"] = "from r2"
        stored["version"] += 1

    article_store.before_swap = _concurrent_reviewer

    _service(article_store).submit_review(
        article_id=row["id"], reviewer_email="r1@example.com", feedback=ReviewFeedback(comments="from r1")
    )

    stored = article_store.rows[row["id"]]
    assert [r["comments"] for r in stored["reviewers"]] == ["from r1", "from r2"]
    assert article_store.swap_calls == 2
    assert stored["version"] == 2


def test_submit_review_gives_up_after_retry_budget(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com")])

    def _always_conflict(article_id: str) -> None:
        article_store.rows[article_id]["version"] += 1

    article_store.before_swap = _always_conflict

    with pytest.raises(ConflictError):
        _service(article_store, attempts=3).submit_review(
            article_id=row["id"], reviewer_email="r1@example.com", feedback=ReviewFeedback(comments="x")
        )
    assert article_store.swap_calls == 3


def test_concurrent_reviews_from_two_reviewers_are_both_kept(article_store):
    row = article_store.seed(reviewers=[_assignment("r1@example.com"), _assignment("r2@example.com")])
    barrier = threading.Barrier(2)
    first_pass = threading.local()

    def _wait_for_both(_article_id: str) -> None:
        # 两个线程都读完旧版本之后才允许写，保证一定发生版本冲突
        if getattr(first_pass, "seen", False):
            return
        first_pass.seen = True
        barrier.wait(timeout=5)

    article_store.before_swap = _wait_for_both
    svc = _service(article_store)

    def _review(email: str):
        return svc.submit_review(
            article_id=row["id"], reviewer_email=email, feedback=ReviewFeedback(comments=f"by {email}", reviewed=True)
        )

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(_review, ["r1@example.com", "r2@example.com"]))

    assert [r["email"] for r in results] == ["r1@example.com", "r2@example.com"]
    stored = article_store.rows[row["id"]]
    assert [r["comments"] for r in stored["reviewers"]] == ["by r1@example.com", "by r2@example.com"]
    assert all(r["reviewed"] for r in stored["reviewers"])
    assert stored["version"] == 2


def test_scoped_listing_with_malformed_journal_id_is_not_found():
    error = APIError({"code": "22P02", "message": "invalid input syntax for type uuid"})

    class _FailingQuery:
        def __getattr__(self, _name):
            return lambda *_a, **_k: self

        def execute(self):
            raise error

    store = ArticleStore(client=SimpleNamespace(table=lambda _name: _FailingQuery()))
    with pytest.raises(NotFoundError, match="No journal articles found"):
        _service(store, scoping=True).list_articles_for_journal("abc")
