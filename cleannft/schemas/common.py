from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for request/response bodies: camelCase on the wire, snake_case in Python."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


def build_pagination(*, page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit if limit else 0,
    }
