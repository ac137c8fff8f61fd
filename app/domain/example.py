"""Example resource: domain model and its create DTO.

No route accepts a body yet; a first write endpoint would bind
``CreateExample``, call ``to_domain()`` and then ``validate_presence()``.
"""

from pydantic import BaseModel, Field


class ValidationError(Exception):
    """A domain object is missing required data."""


class Example(BaseModel):
    example_field: str = ""

    def validate_presence(self) -> None:
        if not self.example_field.strip():
            raise ValidationError("example_field is required")


class CreateExample(BaseModel):
    """Request body for creating an example."""
    example_field: str = Field("", description="Free-form value, must be non-blank")

    def to_domain(self) -> Example:
        return Example(example_field=self.example_field)
