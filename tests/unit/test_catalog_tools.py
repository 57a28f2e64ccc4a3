import pytest

from task_agent.tools.catalog import (
    create_category,
    find_duplicate_questions,
    get_categories,
    get_questions,
    search_questions,
    text_similarity,
    update_question_category,
)
from task_agent.tools.registry import ToolContext
from task_agent.tools.schemas import (
    CreateCategoryInput,
    FindDuplicateQuestionsInput,
    GetCategoriesInput,
    GetQuestionsInput,
    SearchQuestionsInput,
    UpdateQuestionCategoryInput,
)


def _ctx(owner_id: str = "user-1") -> ToolContext:
    return ToolContext(owner_id=owner_id, task_id="task-1")


def test_categories_are_owner_scoped_with_counts(catalog_store) -> None:
    mine = get_categories(catalog_store, GetCategoriesInput(), _ctx())
    theirs = get_categories(catalog_store, GetCategoriesInput(), _ctx("user-2"))

    assert [item.name for item in mine.categories] == ["Behavioral", "Technical"]
    assert [item.question_count for item in mine.categories] == [1, 1]
    assert [item.name for item in theirs.categories] == ["Private"]


def test_create_category_rejects_duplicate_name(catalog_store) -> None:
    created = create_category(catalog_store, CreateCategoryInput(name="System Design"), _ctx())
    assert created.category.order == 2

    with pytest.raises(ValueError, match="already exists"):
        create_category(catalog_store, CreateCategoryInput(name="behavioral"), _ctx())


def test_question_filters_and_search(catalog_store) -> None:
    uncategorized = get_questions(catalog_store, GetQuestionsInput(uncategorized_only=True), _ctx())
    hard = get_questions(catalog_store, GetQuestionsInput(difficulty="Hard"), _ctx())
    by_tag = search_questions(catalog_store, SearchQuestionsInput(query="TEAMWORK"), _ctx())

    assert [item.id for item in uncategorized.questions] == ["q-2"]
    assert [item.id for item in hard.questions] == ["q-3"]
    assert [item.id for item in by_tag.questions] == ["q-1"]


def test_update_question_category_cannot_cross_owners(catalog_store) -> None:
    moved = update_question_category(
        catalog_store,
        UpdateQuestionCategoryInput(question_id="q-2", category_id="cat-behavioral"),
        _ctx(),
    )
    assert moved.question.category_id == "cat-behavioral"

    with pytest.raises(ValueError, match="not found"):
        update_question_category(
            catalog_store,
            UpdateQuestionCategoryInput(question_id="q-2", category_id="cat-private"),
            _ctx(),
        )
    with pytest.raises(ValueError, match="not found"):
        update_question_category(
            catalog_store,
            UpdateQuestionCategoryInput(question_id="q-1", category_id=None),
            _ctx("user-2"),
        )


def test_find_duplicates_uses_word_overlap(catalog_store) -> None:
    result = find_duplicate_questions(
        catalog_store,
        FindDuplicateQuestionsInput(similarity_threshold=0.6),
        _ctx(),
    )

    assert result.total_questions == 3
    assert len(result.duplicates) == 1
    assert sorted(result.duplicates[0].question_ids) == ["q-1", "q-2"]
    assert text_similarity("", "") == 0.0
