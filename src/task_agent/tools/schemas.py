"""Strict Pydantic schemas for catalog tool inputs and outputs."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    """Base model for strict schema validation."""

    model_config = ConfigDict(extra="forbid")


Difficulty = Literal["Easy", "Medium", "Hard"]


class Category(StrictModel):
    id: str
    name: str
    description: str | None = None
    color: str | None = None
    order: int = 0
    is_active: bool = True
    question_count: int = 0


class Question(StrictModel):
    id: str
    question_text: str
    category_id: str | None = None
    difficulty: Difficulty = "Medium"
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class GetCategoriesInput(StrictModel):
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class GetCategoriesOutput(StrictModel):
    success: bool = True
    count: int
    categories: list[Category]


class CreateCategoryInput(StrictModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class CreateCategoryOutput(StrictModel):
    success: bool = True
    category: Category


class GetQuestionsInput(StrictModel):
    category_id: str | None = None
    difficulty: Difficulty | None = None
    uncategorized_only: bool = False
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class GetQuestionsOutput(StrictModel):
    success: bool = True
    count: int
    questions: list[Question]


class SearchQuestionsInput(StrictModel):
    query: str = Field(min_length=1, max_length=200)
    limit: int = Field(default=20, ge=1, le=100)


class UpdateQuestionCategoryInput(StrictModel):
    question_id: str
    category_id: str | None = None


class UpdateQuestionCategoryOutput(StrictModel):
    success: bool = True
    question: Question


class FindDuplicateQuestionsInput(StrictModel):
    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    limit: int = Field(default=50, ge=1, le=100)


class DuplicateGroup(StrictModel):
    question_ids: list[str]
    question_texts: list[str]
    similarity: float


class FindDuplicateQuestionsOutput(StrictModel):
    success: bool = True
    total_questions: int
    threshold: float
    duplicates: list[DuplicateGroup]
