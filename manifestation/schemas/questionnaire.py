from pydantic import BaseModel, Field, StrictInt, field_validator


class AnswerInput(BaseModel):
    question_id: str
    value: StrictInt = Field(ge=1, le=10)

    @field_validator("question_id")
    @classmethod
    def validate_question_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("question_id must not be blank")
        return v
