from __future__ import annotations

"""Query execution tests against a sqlite-backed wiki."""

from datetime import datetime, timedelta, timezone

import pytest

from wikisearch.entities.provider import EntityRef
from wikisearch.entities.repository import EntityNotFoundError
from wikisearch.search.options import SearchOptions
from wikisearch.search.types import SearchContext


@pytest.fixture
def wiki(repository):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    shelf = repository.create("bookshelf", name="Engineering shelf", description="all engineering books")
    book = repository.create(
        "book", name="Deploy handbook", description="deploy runbooks", created_by=2
    )
    other_book = repository.create("book", name="Cooking", description="recipes and deploy of cakes")
    chapter = repository.create(
        "chapter", name="Deploy basics", description="first steps", book_id=book.id
    )
    page_a = repository.create(
        "page",
        name="Deploy to staging",
        text="deploy deploy deploy the service to staging",
        book_id=book.id,
        chapter_id=chapter.id,
        created_by=2,
        created_at=base,
        updated_at=base,
    )
    page_b = repository.create(
        "page",
        name="Rollback",
        text="how to rollback a deploy safely",
        book_id=book.id,
        created_by=3,
        created_at=base + timedelta(days=10),
        updated_at=base + timedelta(days=10),
    )
    page_c = repository.create(
        "page",
        name="Cake recipe",
        text="flour sugar eggs",
        book_id=other_book.id,
        created_by=3,
        created_at=base + timedelta(days=20),
        updated_at=base + timedelta(days=20),
    )
    repository.add_tag(page_a, "env", "staging")
    repository.add_tag(page_a, "priority", "5")
    repository.add_tag(page_b, "priority", "2")
    repository.add_tag(page_c, "priority", "high")
    return {
        "shelf": shelf,
        "book": book,
        "other_book": other_book,
        "chapter": chapter,
        "page_a": page_a,
        "page_b": page_b,
        "page_c": page_c,
    }


def _refs(results) -> list[EntityRef]:
    return [result.ref for result in results]


def test_plain_terms_rank_by_descending_score(search_service, wiki, admin) -> None:
    page = search_service.search_entities(SearchOptions.from_string("deploy"), admin)

    scores = [result.score for result in page.results]
    assert scores == sorted(scores, reverse=True)
    assert wiki["page_c"] not in _refs(page.results)
    assert wiki["page_a"] in _refs(page.results)
    assert wiki["book"] in _refs(page.results)
    assert page.total == len(page.results)


def test_plain_terms_are_prefix_matched(search_service, wiki, admin) -> None:
    results = search_service.search_all(SearchOptions.from_string("roll"), admin)

    assert _refs(results) == [wiki["page_b"]]


def test_plain_terms_are_or_combined(search_service, wiki, admin) -> None:
    results = search_service.search_all(SearchOptions.from_string("flour rollback"), admin)

    assert set(_refs(results)) == {wiki["page_b"], wiki["page_c"]}


def test_type_filter_limits_entity_types(search_service, wiki, admin) -> None:
    options = SearchOptions.from_string("deploy {type:page|book}")

    results = search_service.search_all(options, admin)

    assert results
    assert {result.ref.kind for result in results} <= {"page", "book"}


def test_exact_phrases_require_every_phrase(search_service, wiki, admin) -> None:
    single = search_service.search_all(SearchOptions.from_string('"to staging"'), admin)
    both = search_service.search_all(SearchOptions.from_string('"deploy" "safely"'), admin)

    assert _refs(single) == [wiki["page_a"]]
    assert _refs(both) == [wiki["page_b"]]
    assert all(result.score is None for result in both)


def test_exact_phrase_escapes_like_wildcards(search_service, wiki, admin) -> None:
    results = search_service.search_all(SearchOptions.from_string('"%"'), admin)

    assert results == []


def test_tag_name_and_value_predicates(search_service, wiki, admin) -> None:
    by_name = search_service.search_all(SearchOptions.from_string("[env]"), admin)
    by_value = search_service.search_all(SearchOptions.from_string("[env=staging]"), admin)
    no_match = search_service.search_all(SearchOptions.from_string("[env=prod]"), admin)

    assert _refs(by_name) == [wiki["page_a"]]
    assert _refs(by_value) == [wiki["page_a"]]
    assert no_match == []


def test_numeric_tag_comparison(search_service, wiki, admin) -> None:
    results = search_service.search_all(SearchOptions.from_string("[priority>3]"), admin)

    refs = _refs(results)
    assert wiki["page_a"] in refs
    assert wiki["page_b"] not in refs
    # "high" is compared as text against "3" and never raises
    assert wiki["page_c"] in refs


def test_like_tag_operator(search_service, wiki, admin) -> None:
    results = search_service.search_all(SearchOptions.from_string("[envlikestag]"), admin)

    assert _refs(results) == [wiki["page_a"]]


def test_unknown_filters_are_ignored(search_service, wiki, admin) -> None:
    plain = search_service.search_all(SearchOptions.from_string("deploy"), admin)
    filtered = search_service.search_all(SearchOptions.from_string("deploy {nonsense:1}"), admin)

    assert _refs(filtered) == _refs(plain)


def test_plain_terms_exclude_entities_matched_only_by_other_clauses(
    search_service, wiki, admin
) -> None:
    results = search_service.search_all(SearchOptions.from_string("deploy [priority=high]"), admin)

    assert results == []


def test_search_book_scopes_to_book(search_service, wiki, admin) -> None:
    results = search_service.search_book(
        wiki["book"].id, SearchOptions.from_string("deploy", ["page", "chapter"]), admin
    )

    assert set(_refs(results)) == {wiki["page_a"], wiki["page_b"], wiki["chapter"]}


def test_search_chapter_scopes_to_chapter(search_service, wiki, admin) -> None:
    results = search_service.search_chapter(
        wiki["chapter"].id, SearchOptions.from_string("deploy", ["page"]), admin
    )

    assert _refs(results) == [wiki["page_a"]]


def test_scoped_search_is_capped(repository, search_service, admin) -> None:
    book = repository.create("book", name="Big book", description="")
    for index in range(25):
        repository.create("page", name=f"Note {index}", text="common", book_id=book.id)

    results = search_service.search_book(book.id, SearchOptions.from_string("common"), admin)

    assert len(results) == 20


def test_pagination_reports_global_has_more(repository, search_service, admin) -> None:
    book = repository.create("book", name="Paged", description="paging")
    for index in range(3):
        repository.create("page", name=f"Item {index}", text="paging", book_id=book.id)

    first = search_service.search_entities(
        SearchOptions.from_string("paging"), admin, page=1, per_page=3
    )
    second = search_service.search_entities(
        SearchOptions.from_string("paging"), admin, page=2, per_page=3
    )

    assert first.total == 4
    assert first.count == 3
    assert first.has_more is True
    assert second.count == 1
    assert second.has_more is False


def test_equal_scores_break_ties_by_recency(repository, search_service, admin) -> None:
    book = repository.create("book", name="Ties", description="")
    older = repository.create(
        "page",
        name="tie",
        text="",
        book_id=book.id,
        updated_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
    )
    newer = repository.create(
        "page",
        name="tie",
        text="",
        book_id=book.id,
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    results = search_service.search_all(SearchOptions.from_string("tie {type:page}"), admin)

    assert _refs(results) == [newer, older]


def test_deleted_entity_disappears_from_search(repository, search_service, wiki, admin) -> None:
    repository.delete(wiki["page_b"])

    results = search_service.search_all(SearchOptions.from_string("rollback"), admin)

    assert results == []


def test_empty_type_set_returns_no_results(search_service, wiki, admin) -> None:
    page = search_service.search_entities(SearchOptions.from_string("deploy {type:widget}"), admin)

    assert page.total == 0
    assert page.has_more is False


def test_guest_sees_only_unrestricted_rows(repository, search_service, wiki) -> None:
    secret = repository.create(
        "page", name="Deploy secrets", text="deploy keys", book_id=wiki["book"].id, restricted=True
    )
    guest = SearchContext(actor_id=None, role="guest", action="view")

    refs = _refs(search_service.search_all(SearchOptions.from_string("deploy"), guest))

    assert secret not in refs
    assert wiki["page_a"] in refs


@pytest.fixture
def hierarchy(repository):
    shelf = repository.create("bookshelf", name="Shelf", description="")
    other_shelf = repository.create("bookshelf", name="Hidden shelf", description="", restricted=True)
    book = repository.create("book", name="Guide", description="")
    other_book = repository.create("book", name="Other guide", description="")
    chapter = repository.create("chapter", name="Part one", description="", book_id=book.id)
    in_chapter = repository.create(
        "page", name="Intro", text="", book_id=book.id, chapter_id=chapter.id
    )
    hidden = repository.create(
        "page", name="Drafts", text="", book_id=book.id, chapter_id=chapter.id, restricted=True
    )
    loose = repository.create("page", name="Appendix", text="", book_id=book.id)
    repository.create("page", name="Elsewhere", text="", book_id=other_book.id)
    return {
        "shelf": shelf,
        "other_shelf": other_shelf,
        "book": book,
        "other_book": other_book,
        "chapter": chapter,
        "in_chapter": in_chapter,
        "hidden": hidden,
        "loose": loose,
    }


def test_siblings_of_page_in_chapter_are_visible_chapter_pages(
    search_service, hierarchy, admin
) -> None:
    guest = SearchContext(role="guest")

    assert _refs(search_service.search_siblings(hierarchy["in_chapter"], guest)) == [
        hierarchy["in_chapter"]
    ]
    assert _refs(search_service.search_siblings(hierarchy["in_chapter"], admin)) == [
        hierarchy["in_chapter"],
        hierarchy["hidden"],
    ]


def test_siblings_of_book_level_items_are_direct_book_children(search_service, hierarchy) -> None:
    guest = SearchContext(role="guest")
    expected = [hierarchy["chapter"], hierarchy["loose"]]

    assert _refs(search_service.search_siblings(hierarchy["loose"], guest)) == expected
    assert _refs(search_service.search_siblings(hierarchy["chapter"], guest)) == expected


def test_siblings_of_books_and_shelves(search_service, hierarchy) -> None:
    guest = SearchContext(role="guest")

    assert _refs(search_service.search_siblings(hierarchy["book"], guest)) == [
        hierarchy["book"],
        hierarchy["other_book"],
    ]
    assert _refs(search_service.search_siblings(hierarchy["shelf"], guest)) == [hierarchy["shelf"]]


def test_siblings_of_invisible_or_missing_entity(search_service, hierarchy) -> None:
    guest = SearchContext(role="guest")

    with pytest.raises(EntityNotFoundError):
        search_service.search_siblings(hierarchy["hidden"], guest)
    with pytest.raises(EntityNotFoundError):
        search_service.search_siblings(EntityRef("page", 9999), guest)
