"""Owner-scoped question catalog tools used as the default tool registry.

Every store method takes ``owner_id`` first and only ever touches that owner's
rows. Tool functions read the owner from ``ToolContext``, never from input.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Iterable

from task_agent.tools.registry import ToolContext, ToolRegistry, ToolSpec
from task_agent.tools.schemas import (
    Category,
    CreateCategoryInput,
    CreateCategoryOutput,
    DuplicateGroup,
    FindDuplicateQuestionsInput,
    FindDuplicateQuestionsOutput,
    GetCategoriesInput,
    GetCategoriesOutput,
    GetQuestionsInput,
    GetQuestionsOutput,
    Question,
    SearchQuestionsInput,
    UpdateQuestionCategoryInput,
    UpdateQuestionCategoryOutput,
)

logger = logging.getLogger(__name__)

DUPLICATE_SCAN_LIMIT = 500


class CatalogStore:
    """In-process catalog keyed by owner."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._categories: dict[str, dict[str, Category]] = {}
        self._questions: dict[str, dict[str, Question]] = {}

    def add_category(self, owner_id: str, category: Category) -> Category:
        with self._lock:
            self._categories.setdefault(owner_id, {})[category.id] = category
        return category

    def add_question(self, owner_id: str, question: Question) -> Question:
        with self._lock:
            self._questions.setdefault(owner_id, {})[question.id] = question
        return question

    def categories(self, owner_id: str) -> list[Category]:
        with self._lock:
            items = list(self._categories.get(owner_id, {}).values())
        items.sort(key=lambda item: (item.order, item.name.lower()))
        return items

    def questions(self, owner_id: str) -> list[Question]:
        with self._lock:
            return list(self._questions.get(owner_id, {}).values())

    def get_category(self, owner_id: str, category_id: str) -> Category | None:
        with self._lock:
            return self._categories.get(owner_id, {}).get(category_id)

    def get_question(self, owner_id: str, question_id: str) -> Question | None:
        with self._lock:
            return self._questions.get(owner_id, {}).get(question_id)

    def replace_question(self, owner_id: str, question: Question) -> None:
        with self._lock:
            owned = self._questions.get(owner_id, {})
            if question.id not in owned:
                raise KeyError(f"Question '{question.id}' not found")
            owned[question.id] = question

    def seed(
        self,
        owner_id: str,
        *,
        categories: Iterable[Category] = (),
        questions: Iterable[Question] = (),
    ) -> None:
        for category in categories:
            self.add_category(owner_id, category)
        for question in questions:
            self.add_question(owner_id, question)


def _with_counts(store: CatalogStore, owner_id: str, categories: list[Category]) -> list[Category]:
    counts: dict[str, int] = {}
    for question in store.questions(owner_id):
        if question.is_active and question.category_id:
            counts[question.category_id] = counts.get(question.category_id, 0) + 1
    return [
        category.model_copy(update={"question_count": counts.get(category.id, 0)})
        for category in categories
    ]


def get_categories(
    store: CatalogStore, payload: GetCategoriesInput, context: ToolContext
) -> GetCategoriesOutput:
    categories = store.categories(context.owner_id)
    page = categories[payload.offset : payload.offset + payload.limit]
    page = _with_counts(store, context.owner_id, page)
    logger.info(
        "catalog_tool event=get_categories owner_id=%s count=%d",
        context.owner_id,
        len(page),
    )
    return GetCategoriesOutput(count=len(page), categories=page)


def create_category(
    store: CatalogStore, payload: CreateCategoryInput, context: ToolContext
) -> CreateCategoryOutput:
    existing = store.categories(context.owner_id)
    if any(item.name.lower() == payload.name.lower() for item in existing):
        raise ValueError(f"Category '{payload.name}' already exists")

    category = Category(
        id=str(uuid.uuid4()),
        name=payload.name,
        description=payload.description,
        color=payload.color,
        order=len(existing),
    )
    store.add_category(context.owner_id, category)
    logger.info(
        "catalog_tool event=create_category owner_id=%s task_id=%s category_id=%s",
        context.owner_id,
        context.task_id,
        category.id,
    )
    return CreateCategoryOutput(category=category)


def get_questions(
    store: CatalogStore, payload: GetQuestionsInput, context: ToolContext
) -> GetQuestionsOutput:
    questions = [item for item in store.questions(context.owner_id) if item.is_active]
    if payload.uncategorized_only:
        questions = [item for item in questions if not item.category_id]
    elif payload.category_id is not None:
        questions = [item for item in questions if item.category_id == payload.category_id]
    if payload.difficulty is not None:
        questions = [item for item in questions if item.difficulty == payload.difficulty]

    page = questions[payload.offset : payload.offset + payload.limit]
    return GetQuestionsOutput(count=len(page), questions=page)


def search_questions(
    store: CatalogStore, payload: SearchQuestionsInput, context: ToolContext
) -> GetQuestionsOutput:
    needle = payload.query.lower()
    matches = [
        item
        for item in store.questions(context.owner_id)
        if item.is_active
        and (needle in item.question_text.lower() or any(needle in tag.lower() for tag in item.tags))
    ]
    page = matches[: payload.limit]
    return GetQuestionsOutput(count=len(page), questions=page)


def update_question_category(
    store: CatalogStore, payload: UpdateQuestionCategoryInput, context: ToolContext
) -> UpdateQuestionCategoryOutput:
    question = store.get_question(context.owner_id, payload.question_id)
    if question is None:
        raise ValueError(f"Question '{payload.question_id}' not found")
    if payload.category_id is not None and store.get_category(context.owner_id, payload.category_id) is None:
        raise ValueError(f"Category '{payload.category_id}' not found")

    updated = question.model_copy(update={"category_id": payload.category_id})
    store.replace_question(context.owner_id, updated)
    logger.info(
        "catalog_tool event=update_question_category owner_id=%s task_id=%s question_id=%s",
        context.owner_id,
        context.task_id,
        updated.id,
    )
    return UpdateQuestionCategoryOutput(question=updated)


_WORD_RE = re.compile(r"\s+")


def text_similarity(left: str, right: str) -> float:
    """Jaccard similarity over lowercased words longer than two characters."""
    left_words = {word for word in _WORD_RE.split(left.lower()) if len(word) > 2}
    right_words = {word for word in _WORD_RE.split(right.lower()) if len(word) > 2}
    union = left_words | right_words
    if not union:
        return 0.0
    return len(left_words & right_words) / len(union)


def find_duplicate_questions(
    store: CatalogStore, payload: FindDuplicateQuestionsInput, context: ToolContext
) -> FindDuplicateQuestionsOutput:
    questions = [item for item in store.questions(context.owner_id) if item.is_active]
    questions = questions[:DUPLICATE_SCAN_LIMIT]

    groups: list[DuplicateGroup] = []
    for index, left in enumerate(questions):
        for right in questions[index + 1 :]:
            similarity = text_similarity(left.question_text, right.question_text)
            if similarity >= payload.similarity_threshold:
                groups.append(
                    DuplicateGroup(
                        question_ids=[left.id, right.id],
                        question_texts=[left.question_text, right.question_text],
                        similarity=round(similarity, 2),
                    )
                )
    groups.sort(key=lambda group: group.similarity, reverse=True)
    return FindDuplicateQuestionsOutput(
        total_questions=len(questions),
        threshold=payload.similarity_threshold,
        duplicates=groups[: payload.limit],
    )


def build_catalog_registry(store: CatalogStore) -> ToolRegistry:
    def _bind(fn):
        return lambda payload, context: fn(store, payload, context)

    return ToolRegistry(
        [
            ToolSpec(
                name="get_categories",
                description=(
                    "List the user's question categories sorted by display order, "
                    "with the number of active questions in each."
                ),
                input_model=GetCategoriesInput,
                fn=_bind(get_categories),
            ),
            ToolSpec(
                name="create_category",
                description="Create a new question category. Names are unique per user.",
                input_model=CreateCategoryInput,
                fn=_bind(create_category),
            ),
            ToolSpec(
                name="get_questions",
                description=(
                    "List active questions, optionally filtered by category, difficulty, "
                    "or only those without a category."
                ),
                input_model=GetQuestionsInput,
                fn=_bind(get_questions),
            ),
            ToolSpec(
                name="search_questions",
                description="Case-insensitive search over question text and tags.",
                input_model=SearchQuestionsInput,
                fn=_bind(search_questions),
            ),
            ToolSpec(
                name="update_question_category",
                description="Move a question into a category, or clear its category with null.",
                input_model=UpdateQuestionCategoryInput,
                fn=_bind(update_question_category),
            ),
            ToolSpec(
                name="find_duplicate_questions",
                description=(
                    "Find pairs of active questions whose wording overlaps above a "
                    "similarity threshold between 0 and 1."
                ),
                input_model=FindDuplicateQuestionsInput,
                fn=_bind(find_duplicate_questions),
            ),
        ]
    )


def build_default_registry() -> ToolRegistry:
    """Catalog tools over an empty in-process store; data does not leave the process."""
    return build_catalog_registry(CatalogStore())
