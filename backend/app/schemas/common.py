"""
通用Schema：前端使用 camelCase 字段名
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """请求/响应字段以 camelCase 序列化，代码中使用 snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SuccessResponse(CamelModel):
    success: bool = True
    message: str | None = None
