"""
Pydantic schemas for question generation structured outputs from LLM
"""
from pydantic import BaseModel, Field
from typing import List


class GeneratedFeatures(BaseModel):
    """Cognitive demand of one question, each 0.0-1.0"""
    memorization: float = Field(..., description="Recall of facts, terms and definitions, 0.0-1.0")
    reasoning: float = Field(..., description="Conceptual or logical reasoning required, 0.0-1.0")
    numerical: float = Field(..., description="Calculation or quantitative work required, 0.0-1.0")
    language: float = Field(..., description="Reading comprehension or verbal load, 0.0-1.0")


class GeneratedQuestion(BaseModel):
    id: str = Field(..., description="Question identifier such as Q1, Q2")
    question: str = Field(..., description="Question text; math may use LaTeX")
    options: List[str] = Field(..., description="Exactly four answer options")
    correct_option_index: int = Field(..., description="Index 0-3 of the correct option")
    skills: List[str] = Field(
        ...,
        description="Skill tags such as numerical, reasoning, memorization, language, application",
    )
    features: GeneratedFeatures


class GeneratedQuestionBatch(BaseModel):
    """Schema for the question batch structured output from LLM"""
    questions: List[GeneratedQuestion]
